"""User roles and the capabilities attached to them."""
from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    VIEWER = "viewer"


def parse_role(value: str | Role | None) -> Role | None:
    """Return the :class:`Role` named by ``value`` or ``None`` if unknown."""

    if value is None:
        return None
    if isinstance(value, Role):
        return value
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def can_manage_users(role: Role | None) -> bool:
    return role is Role.ADMIN


def can_manage_materials(role: Role | None) -> bool:
    return role in (Role.ADMIN, Role.MANAGER)


def can_record_transactions(role: Role | None) -> bool:
    return role in (Role.ADMIN, Role.MANAGER, Role.STAFF)


def can_acknowledge_alerts(role: Role | None) -> bool:
    return role in (Role.ADMIN, Role.MANAGER, Role.STAFF)


def can_view(role: Role | None) -> bool:
    return role is not None


__all__ = [
    "Role",
    "can_acknowledge_alerts",
    "can_manage_materials",
    "can_manage_users",
    "can_record_transactions",
    "can_view",
    "parse_role",
]
