"""User directory service: an authenticated CRUD API for user accounts."""

from __future__ import annotations

from typing import Any

from .config import ServiceConfig, load_service_config, resolve_database_path
from .database import Database


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the user API application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "ServiceConfig",
    "create_app",
    "load_service_config",
    "resolve_database_path",
]
