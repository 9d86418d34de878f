"""Typed failures raised by the user data-access layer."""
from __future__ import annotations

from typing import Iterable, List


class UserServiceError(Exception):
    """Base class for every failure surfaced by the repository."""


class ValidationFailed(UserServiceError):
    """Raised when user input breaks one or more validation rules."""

    def __init__(self, messages: Iterable[str]) -> None:
        self.messages: List[str] = list(messages)
        super().__init__("Invalid user data: " + ", ".join(self.messages))


class EmailTaken(UserServiceError):
    """Raised when another user already owns the requested email address."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Email is already in use")


class NotFound(UserServiceError):
    """Raised when the requested user does not exist."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class NoFieldsProvided(UserServiceError):
    """Raised when a partial update names no mutable field."""

    def __init__(self) -> None:
        super().__init__("No fields provided for update")


class InvalidCredentials(UserServiceError):
    """Raised for an unknown email and for a wrong password alike."""

    def __init__(self) -> None:
        super().__init__("Invalid credentials")


class StorageUnavailable(UserServiceError):
    """Raised when the database cannot serve a request.

    The underlying driver error is chained as ``__cause__``.
    """


__all__ = [
    "EmailTaken",
    "InvalidCredentials",
    "NoFieldsProvided",
    "NotFound",
    "StorageUnavailable",
    "UserServiceError",
    "ValidationFailed",
]
