"""FastAPI application exposing the user CRUD endpoints."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import anyio
from fastapi import FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .database import SQLITE_MAX_INTEGER, ConnectionPool
from .errors import (
    EmailTaken,
    InvalidCredentials,
    NoFieldsProvided,
    NotFound,
    StorageUnavailable,
    ValidationFailed,
)
from .models import NewUser, Page, User, UserFilters, UserPatch
from .repository import UserRepository
from .security import PasswordHasher

logger = logging.getLogger("user_service.api")

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "Cross-Origin-Opener-Policy": "same-origin",
}


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    age: Optional[int]
    created_at: datetime
    updated_at: datetime


class PaginationResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool


class UserCreateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    age: Optional[int] = None


class UserUpdateRequest(BaseModel):
    """Partial update; only the keys present in the JSON body are applied."""

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    age: Optional[int] = None

    def to_patch(self) -> UserPatch:
        return UserPatch.from_mapping({key: getattr(self, key) for key in self.model_fields_set})


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def user_to_response(user: User) -> Dict[str, Any]:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        age=user.age,
        created_at=user.created_at,
        updated_at=user.updated_at,
    ).model_dump(mode="json")


def page_to_pagination(page: Page) -> Dict[str, Any]:
    return PaginationResponse(
        current_page=page.page,
        total_pages=page.total_pages,
        total_items=page.total,
        items_per_page=page.limit,
        has_next_page=page.has_next_page,
        has_prev_page=page.has_prev_page,
    ).model_dump(by_alias=True)


def envelope(
    status_code: int,
    *,
    message: Optional[str] = None,
    data: Any = None,
    errors: Optional[List[str]] = None,
    pagination: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Build the ``{success, message?, data?, errors?, pagination?}`` response."""

    content: Dict[str, Any] = {"success": status_code < 400}
    if message is not None:
        content["message"] = message
    if data is not None:
        content["data"] = data
    if errors is not None:
        content["errors"] = errors
    if pagination is not None:
        content["pagination"] = pagination
    return JSONResponse(status_code=status_code, content=content)


def parse_user_id(raw: str) -> Optional[int]:
    """Return the numeric id in ``raw`` or ``None`` when it is not a positive integer."""

    value = raw.strip()
    if not value.isascii() or not value.isdigit():
        return None
    number = int(value)
    return number if number > 0 else None


def _format_request_errors(exc: RequestValidationError) -> List[str]:
    messages: List[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        message = str(error.get("msg", "Invalid value"))
        messages.append(f"{location}: {message}" if location else message)
    return messages


def create_app(
    *,
    settings: Settings | None = None,
    pool: ConnectionPool | None = None,
    repository: UserRepository | None = None,
    hasher: PasswordHasher | None = None,
) -> FastAPI:
    """Create the HTTP application.

    When neither ``pool`` nor ``repository`` is supplied the application builds
    its own pool from ``settings`` and drains it on shutdown. A supplied pool
    stays owned by the caller; its schema is still created at startup.
    """

    if settings is None:
        settings = load_settings()

    owns_pool = pool is None and repository is None
    if repository is None:
        if pool is None:
            pool = ConnectionPool(
                settings.database_path,
                size=settings.pool_size,
                timeout=settings.pool_timeout,
            )
        repository = UserRepository(pool, hasher=hasher)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if pool is not None:
            await anyio.to_thread.run_sync(pool.initialize)
        try:
            yield
        finally:
            if owns_pool and pool is not None:
                pool.close()

    app = FastAPI(
        title="User Service",
        description="CRUD API for user accounts with password login",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.pool = pool
    app.state.repository = repository

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for header, value in _SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    def _invalid_id() -> JSONResponse:
        return envelope(
            status.HTTP_400_BAD_REQUEST,
            message="User id must be a valid number",
        )

    @app.get("/health")
    async def healthcheck() -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Server is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/users")
    async def list_users(
        page: int = Query(1, ge=1, le=SQLITE_MAX_INTEGER),
        limit: int = Query(10, ge=1, le=SQLITE_MAX_INTEGER),
        name: Optional[str] = None,
        email: Optional[str] = None,
        min_age: Optional[int] = Query(None, alias="minAge", le=SQLITE_MAX_INTEGER),
        max_age: Optional[int] = Query(None, alias="maxAge", le=SQLITE_MAX_INTEGER),
    ) -> JSONResponse:
        filters = UserFilters(
            name=name or None,
            email=email or None,
            min_age=min_age,
            max_age=max_age,
        )
        result = await anyio.to_thread.run_sync(repository.paginate, page, limit, filters)
        return envelope(
            status.HTTP_200_OK,
            data=[user_to_response(user) for user in result.items],
            pagination=page_to_pagination(result),
        )

    @app.get("/api/users/{user_id}")
    async def read_user(user_id: str) -> JSONResponse:
        parsed = parse_user_id(user_id)
        if parsed is None:
            return _invalid_id()
        user = await anyio.to_thread.run_sync(repository.find_by_id, parsed)
        if user is None:
            raise NotFound(parsed)
        return envelope(status.HTTP_200_OK, data=user_to_response(user))

    @app.post("/api/users")
    async def create_user(payload: UserCreateRequest) -> JSONResponse:
        new_user = NewUser(
            name=payload.name,
            email=payload.email,
            password=payload.password,
            age=payload.age,
        )
        user = await anyio.to_thread.run_sync(repository.create, new_user)
        return envelope(
            status.HTTP_201_CREATED,
            message="User created successfully",
            data=user_to_response(user),
        )

    @app.post("/api/users/login")
    async def login(payload: LoginRequest) -> JSONResponse:
        if not payload.email or not payload.password:
            return envelope(
                status.HTTP_400_BAD_REQUEST,
                message="Email and password are required",
            )
        user = await anyio.to_thread.run_sync(repository.authenticate, payload.email, payload.password)
        return envelope(
            status.HTTP_200_OK,
            message="Login successful",
            data=user_to_response(user),
        )

    @app.put("/api/users/{user_id}")
    async def update_user(user_id: str, payload: UserUpdateRequest) -> JSONResponse:
        parsed = parse_user_id(user_id)
        if parsed is None:
            return _invalid_id()
        user = await anyio.to_thread.run_sync(repository.update, parsed, payload.to_patch())
        return envelope(
            status.HTTP_200_OK,
            message="User updated successfully",
            data=user_to_response(user),
        )

    @app.delete("/api/users/{user_id}")
    async def delete_user(user_id: str) -> JSONResponse:
        parsed = parse_user_id(user_id)
        if parsed is None:
            return _invalid_id()
        user = await anyio.to_thread.run_sync(repository.delete, parsed)
        return envelope(
            status.HTTP_200_OK,
            message="User deleted successfully",
            data=user_to_response(user),
        )

    @app.exception_handler(ValidationFailed)
    async def handle_validation_failed(_: Request, exc: ValidationFailed) -> JSONResponse:
        return envelope(status.HTTP_400_BAD_REQUEST, message="Invalid user data", errors=exc.messages)

    @app.exception_handler(EmailTaken)
    async def handle_email_taken(_: Request, exc: EmailTaken) -> JSONResponse:
        return envelope(status.HTTP_400_BAD_REQUEST, message="Email is already in use")

    @app.exception_handler(NoFieldsProvided)
    async def handle_no_fields(_: Request, exc: NoFieldsProvided) -> JSONResponse:
        return envelope(status.HTTP_400_BAD_REQUEST, message="No fields provided for update")

    @app.exception_handler(NotFound)
    async def handle_not_found(_: Request, exc: NotFound) -> JSONResponse:
        return envelope(status.HTTP_404_NOT_FOUND, message="User not found")

    @app.exception_handler(InvalidCredentials)
    async def handle_invalid_credentials(_: Request, exc: InvalidCredentials) -> JSONResponse:
        return envelope(status.HTTP_401_UNAUTHORIZED, message="Invalid credentials")

    @app.exception_handler(StorageUnavailable)
    async def handle_storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
        logger.error(
            "Storage failure while handling %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, message="Storage unavailable")

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        return envelope(
            status.HTTP_400_BAD_REQUEST,
            message="Invalid request data",
            errors=_format_request_errors(exc),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return envelope(exc.status_code, message="Route not found")
        return envelope(exc.status_code, message=str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error while handling %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, message="Internal server error")

    return app


__all__ = ["create_app", "envelope", "parse_user_id", "user_to_response"]
