"""Validation rules for user payloads."""
from __future__ import annotations

import re
from typing import Any, List, Mapping

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 150
PASSWORD_MIN_LENGTH = 6
AGE_MIN = 0
AGE_MAX = 150

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and _EMAIL_PATTERN.match(value) is not None


def validate_user(fields: Mapping[str, Any], *, partial: bool = False) -> List[str]:
    """Check ``fields`` and return every violated rule.

    In full mode (``partial=False``) name, email and password are required.
    In partial mode only the keys present in ``fields`` are checked. Age is
    optional in both modes and ``None`` always passes.
    """

    errors: List[str] = []

    if not partial or "name" in fields:
        name = fields.get("name")
        trimmed = name.strip() if isinstance(name, str) else ""
        if len(trimmed) < NAME_MIN_LENGTH:
            errors.append(f"Name must be at least {NAME_MIN_LENGTH} characters")
        elif len(trimmed) > NAME_MAX_LENGTH:
            errors.append(f"Name must be at most {NAME_MAX_LENGTH} characters")

    if not partial or "email" in fields:
        email = fields.get("email")
        if not is_valid_email(email):
            errors.append("Email must be a valid address")
        if isinstance(email, str) and len(email) > EMAIL_MAX_LENGTH:
            errors.append(f"Email must be at most {EMAIL_MAX_LENGTH} characters")

    if not partial or "password" in fields:
        password = fields.get("password")
        if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
            errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")

    age = fields.get("age")
    if age is not None:
        # bool is an int subclass; reject it explicitly
        if isinstance(age, bool) or not isinstance(age, int) or not AGE_MIN <= age <= AGE_MAX:
            errors.append(f"Age must be an integer between {AGE_MIN} and {AGE_MAX}")

    return errors


__all__ = ["is_valid_email", "validate_user"]
