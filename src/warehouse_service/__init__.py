"""Warehouse inventory service package."""
from __future__ import annotations

__all__ = ["create_app"]


def create_app(*args, **kwargs):
    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)
