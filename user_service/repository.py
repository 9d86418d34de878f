"""Reads and writes against the users table."""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from .database import (
    SQLITE_MAX_INTEGER,
    ConnectionProvider,
    current_timestamp,
    parse_datetime,
    serialize_datetime,
    users,
)
from .errors import (
    EmailTaken,
    InvalidCredentials,
    NoFieldsProvided,
    NotFound,
    ValidationFailed,
)
from .models import NewUser, Page, User, UserFilters, UserPatch
from .security import PasswordHasher
from .validation import validate_user

logger = logging.getLogger("user_service.repository")

_PUBLIC_COLUMNS = (
    users.c.id,
    users.c.name,
    users.c.email,
    users.c.age,
    users.c.created_at,
    users.c.updated_at,
)
_NEWEST_FIRST = (users.c.created_at.desc(), users.c.id.desc())


def _clamp(value: int) -> int:
    # values outside SQLite's INTEGER range cannot be bound; no stored row lies beyond them
    return max(-SQLITE_MAX_INTEGER - 1, min(value, SQLITE_MAX_INTEGER))


def _filter_conditions(filters: UserFilters) -> list:
    conditions = []
    if filters.name is not None:
        conditions.append(users.c.name.contains(filters.name, autoescape=True))
    if filters.email is not None:
        conditions.append(users.c.email.contains(filters.email, autoescape=True))
    if filters.min_age is not None:
        conditions.append(users.c.age >= _clamp(filters.min_age))
    if filters.max_age is not None:
        conditions.append(users.c.age <= _clamp(filters.max_age))
    return conditions


class UserRepository:
    """Data access and validation for user records.

    ``storage`` supplies pooled connections and scoped transactions (see
    :class:`~user_service.database.ConnectionPool`). Multi-step writes run in
    one transaction on one connection; reads borrow a connection for a single
    statement.
    """

    def __init__(self, storage: ConnectionProvider, *, hasher: Optional[PasswordHasher] = None) -> None:
        self._storage = storage
        self._hasher = hasher or PasswordHasher()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_page(self, limit: int, offset: int = 0) -> List[User]:
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must not be negative")
        query = (
            select(*_PUBLIC_COLUMNS)
            .order_by(*_NEWEST_FIRST)
            .limit(_clamp(limit))
            .offset(_clamp(offset))
        )
        with self._storage.connection() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._row_to_user(row) for row in rows]

    def count(self) -> int:
        with self._storage.connection() as conn:
            return int(conn.execute(select(func.count()).select_from(users)).scalar_one())

    def find_by_id(self, user_id: int) -> Optional[User]:
        with self._storage.connection() as conn:
            return self._select_by_id(conn, user_id)

    def find_by_email(self, email: str, *, include_credential: bool = False) -> Optional[User]:
        with self._storage.connection() as conn:
            return self._select_by_email(conn, email, include_credential=include_credential)

    def find_with_filters(self, filters: UserFilters) -> List[User]:
        query = select(*_PUBLIC_COLUMNS).where(*_filter_conditions(filters)).order_by(*_NEWEST_FIRST)
        if filters.limit is not None:
            query = query.limit(_clamp(filters.limit))
        if filters.offset:
            query = query.offset(_clamp(filters.offset))

        with self._storage.connection() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._row_to_user(row) for row in rows]

    def count_with_filters(self, filters: UserFilters) -> int:
        query = select(func.count()).select_from(users).where(*_filter_conditions(filters))
        with self._storage.connection() as conn:
            return int(conn.execute(query).scalar_one())

    def paginate(self, page: int, limit: int, filters: Optional[UserFilters] = None) -> Page:
        """Return page ``page`` (1-based) of ``limit`` users, with a true total."""

        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        offset = (page - 1) * limit

        if filters is None or filters.is_empty():
            items = self.list_page(limit, offset)
            total = self.count()
        else:
            scoped = UserFilters(
                name=filters.name,
                email=filters.email,
                min_age=filters.min_age,
                max_age=filters.max_age,
                limit=limit,
                offset=offset,
            )
            items = self.find_with_filters(scoped)
            total = self.count_with_filters(scoped)

        return Page(items=items, page=page, limit=limit, total=total)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(self, data: NewUser) -> User:
        with self._storage.transaction() as conn:
            errors = validate_user(data.as_fields())
            if errors:
                raise ValidationFailed(errors)

            if self._select_by_email(conn, data.email) is not None:
                raise EmailTaken(data.email)

            password_hash = self._hasher.hash(data.password)
            now = serialize_datetime(current_timestamp())
            try:
                result = conn.execute(
                    insert(users).values(
                        name=data.name.strip(),
                        email=data.email,
                        password=password_hash,
                        age=data.age,
                        created_at=now,
                        updated_at=now,
                    )
                )
            except IntegrityError as exc:
                raise EmailTaken(data.email) from exc
            user_id = int(result.inserted_primary_key[0])

        logger.info("Created user %s", user_id)
        created = self.find_by_id(user_id)
        if created is None:
            raise NotFound(user_id)
        return created

    def update(self, user_id: int, patch: UserPatch) -> User:
        with self._storage.transaction() as conn:
            if self._select_by_id(conn, user_id) is None:
                raise NotFound(user_id)

            fields = patch.provided()
            errors = validate_user(fields, partial=True)
            if errors:
                raise ValidationFailed(errors)

            if "email" in fields:
                owner = self._select_by_email(conn, fields["email"])
                if owner is not None and owner.id != user_id:
                    raise EmailTaken(fields["email"])

            values: dict = {}
            for column, value in fields.items():
                if column == "password":
                    value = self._hasher.hash(value)
                elif column == "name":
                    value = value.strip()
                values[column] = value

            if not values:
                raise NoFieldsProvided()

            values["updated_at"] = serialize_datetime(current_timestamp())
            try:
                conn.execute(update(users).where(users.c.id == user_id).values(**values))
            except IntegrityError as exc:
                raise EmailTaken(str(fields.get("email"))) from exc

        logger.info("Updated user %s (%s)", user_id, ", ".join(sorted(fields)))
        updated = self.find_by_id(user_id)
        if updated is None:
            raise NotFound(user_id)
        return updated

    def delete(self, user_id: int) -> User:
        with self._storage.transaction() as conn:
            snapshot = self._select_by_id(conn, user_id)
            if snapshot is None:
                raise NotFound(user_id)
            conn.execute(delete(users).where(users.c.id == user_id))

        logger.info("Deleted user %s", user_id)
        return snapshot

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def authenticate(self, email: str, password: str) -> User:
        user = self.find_by_email(email, include_credential=True)
        if user is None:
            self._hasher.dummy_verify()
            logger.warning("Login failed: no account for the supplied email")
            raise InvalidCredentials()

        if not self._hasher.verify(password, user.password_hash):
            logger.warning("Login failed for user %s: wrong password", user.id)
            raise InvalidCredentials()

        return user.without_credential()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _select_by_id(self, conn: Connection, user_id: int) -> Optional[User]:
        if not 0 < user_id <= SQLITE_MAX_INTEGER:
            return None
        row = conn.execute(select(*_PUBLIC_COLUMNS).where(users.c.id == user_id)).mappings().first()
        if row is None:
            return None
        return self._row_to_user(row)

    def _select_by_email(
        self,
        conn: Connection,
        email: str,
        *,
        include_credential: bool = False,
    ) -> Optional[User]:
        columns = (*_PUBLIC_COLUMNS, users.c.password) if include_credential else _PUBLIC_COLUMNS
        row = conn.execute(select(*columns).where(users.c.email == email)).mappings().first()
        if row is None:
            return None
        return self._row_to_user(row)

    def _row_to_user(self, row: Mapping[str, Any]) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            age=int(row["age"]) if row["age"] is not None else None,
            created_at=parse_datetime(str(row["created_at"])),
            updated_at=parse_datetime(str(row["updated_at"])),
            password_hash=str(row["password"]) if "password" in row else None,
        )


__all__ = ["UserRepository"]
