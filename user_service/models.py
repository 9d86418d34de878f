"""Domain models for the user service."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

MUTABLE_FIELDS: Tuple[str, ...] = ("name", "email", "password", "age")


class _Sentinel(Enum):
    MISSING = "MISSING"

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Sentinel.MISSING


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the users table."""

    id: int
    name: str
    email: str
    age: Optional[int]
    created_at: datetime
    updated_at: datetime
    password_hash: Optional[str] = field(default=None, repr=False, compare=False)

    def without_credential(self) -> "User":
        if self.password_hash is None:
            return self
        return replace(self, password_hash=None)


@dataclass(frozen=True)
class NewUser:
    """Fields supplied when creating a user. Missing values are ``None``."""

    name: Any = None
    email: Any = None
    password: Any = None
    age: Any = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "NewUser":
        return cls(**{key: data.get(key) for key in MUTABLE_FIELDS})

    def as_fields(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in MUTABLE_FIELDS}


@dataclass(frozen=True)
class UserPatch:
    """A partial update.

    Every attribute defaults to :data:`MISSING`, which is distinct from an
    explicit ``None``: ``UserPatch(age=None)`` clears the age while
    ``UserPatch()`` leaves it alone.
    """

    name: Union[str, None, _Sentinel] = MISSING
    email: Union[str, None, _Sentinel] = MISSING
    password: Union[str, None, _Sentinel] = MISSING
    age: Union[int, None, _Sentinel] = MISSING

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "UserPatch":
        return cls(**{key: data[key] for key in MUTABLE_FIELDS if key in data})

    def provided(self) -> Dict[str, Any]:
        """Return only the fields that were supplied, in column order."""

        return {
            key: getattr(self, key)
            for key in MUTABLE_FIELDS
            if getattr(self, key) is not MISSING
        }

    def is_empty(self) -> bool:
        return not self.provided()


@dataclass(frozen=True)
class UserFilters:
    name: Optional[str] = None
    email: Optional[str] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def is_empty(self) -> bool:
        """``True`` when no search criterion is set (limit/offset do not count)."""

        return all(
            value is None for value in (self.name, self.email, self.min_age, self.max_age)
        )


@dataclass(frozen=True)
class Page:
    """One page of users plus the numbers needed to render pagination."""

    items: List[User]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


__all__ = [
    "MISSING",
    "MUTABLE_FIELDS",
    "NewUser",
    "Page",
    "User",
    "UserFilters",
    "UserPatch",
]
