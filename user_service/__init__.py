"""User account service: repository, credential hashing and HTTP API."""

from __future__ import annotations

from typing import Any

from .database import ConnectionPool, resolve_database_path
from .repository import UserRepository
from .security import PasswordHasher


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ConnectionPool",
    "PasswordHasher",
    "UserRepository",
    "create_app",
    "resolve_database_path",
]
