"""Domain exceptions raised by the repository and services."""
from __future__ import annotations

from typing import Any


class InventoryError(Exception):
    """Base exception for warehouse inventory errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InsufficientStockError(InventoryError, ValueError):
    """A stock movement would drive a material's quantity below zero."""

    def __init__(self, material_code: str, delta: float) -> None:
        super().__init__(
            f"Cannot reduce inventory of {material_code} below zero.",
            details={"material_code": material_code, "delta": delta},
        )


class DefectResolutionError(InventoryError, ValueError):
    """A defect was marked resolved without resolution notes."""


class DuplicateEntityError(InventoryError):
    """A record with the same business key already exists."""


class PersistenceFailure(InventoryError):
    """A repository read or write did not complete."""


class PermissionDeniedError(InventoryError):
    """The acting role lacks the capability required for an operation."""


__all__ = [
    "DefectResolutionError",
    "DuplicateEntityError",
    "InsufficientStockError",
    "InventoryError",
    "PermissionDeniedError",
    "PersistenceFailure",
]
