"""One-way password hashing for stored user credentials."""
from __future__ import annotations

from typing import Optional

from passlib.context import CryptContext

DEFAULT_BCRYPT_ROUNDS = 10
_MIN_BCRYPT_ROUNDS = 4


class PasswordHasher:
    """bcrypt hash/verify pair.

    Every call to :meth:`hash` embeds a fresh random salt, so hashing the same
    plaintext twice yields different strings.
    """

    def __init__(self, *, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        if rounds < _MIN_BCRYPT_ROUNDS:
            raise ValueError(f"bcrypt requires at least {_MIN_BCRYPT_ROUNDS} rounds")
        self._rounds = rounds
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, hashed: Optional[str]) -> bool:
        if not hashed:
            return False
        try:
            return self._context.verify(plaintext, hashed)
        except (ValueError, TypeError):
            return False

    def dummy_verify(self) -> None:
        """Spend the time of a real verification without a stored hash."""

        self._context.dummy_verify()


__all__ = ["DEFAULT_BCRYPT_ROUNDS", "PasswordHasher"]
