"""FastAPI application exposing the authenticated user resource."""
from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import anyio
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .config import ServiceConfig, load_service_config
from .database import Database
from .errors import NotFound, Unauthenticated, UserAPIError, ValidationFailed, handle_user_api_error
from .models import User
from .pagination import PageRequest, build_page_result, fetch_user_page
from .security import APITokenAuth

logger = logging.getLogger("userapi.api")

PayloadT = TypeVar("PayloadT", bound=BaseModel)
ResultT = TypeVar("ResultT")


def _require_text(value: str, field: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field} must not be empty")
    return stripped


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    local, _, domain = stripped.partition("@")
    if not local or not domain:
        raise ValueError("email must be a valid email address")
    return stripped


class UserResponse(BaseModel):
    id: int
    username: str
    name: Optional[str]
    email: Optional[str]
    created_at: datetime
    updated_at: datetime


class RegisterResponse(UserResponse):
    token: str


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse


class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        return _require_text(value, "username")

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)


class UpdateUserRequest(BaseModel):
    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: Optional[str]) -> Optional[str]:
        return _require_text(value, "username") if value is not None else None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @model_validator(mode="after")
    def _reject_null_credentials(self):  # type: ignore[override]
        for field in ("username", "password"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} must not be null")
        return self

    def changes(self) -> Dict[str, Any]:
        """Return only the fields the client actually sent."""
        return {field: getattr(self, field) for field in self.model_fields_set}


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


async def run_store(func: Callable[..., ResultT], *args: Any, **kwargs: Any) -> ResultT:
    """Run a blocking store call (sqlite3 I/O, bcrypt) in a worker thread."""
    return await anyio.to_thread.run_sync(partial(func, *args, **kwargs))


async def read_payload(request: Request, model: Type[PayloadT]) -> PayloadT:
    """Parse and validate the JSON body of ``request`` against ``model``."""
    try:
        raw = await request.json()
    except ValueError as exc:
        raise ValidationFailed("Request body must be valid JSON") from exc
    if not isinstance(raw, dict):
        raise ValidationFailed("Request body must be a JSON object")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise ValidationFailed(
            "The given data was invalid",
            details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc


async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    failure = ValidationFailed("The given data was invalid", details={"errors": _safe_errors(exc)})
    return await handle_user_api_error(request, failure)


def _safe_errors(exc: RequestValidationError) -> list[Dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


def create_app(
    *,
    database: Database | None = None,
    auth: APITokenAuth | None = None,
    config: ServiceConfig | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    if config is None:
        config = load_service_config()

    if database is None:
        database = Database(config.database_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if auth is None:
        auth = APITokenAuth(database)

    app = FastAPI(
        title=config.title,
        description="Authenticated CRUD API for user accounts",
        version=config.version,
    )
    app.state.database = database
    app.state.config = config

    app.add_exception_handler(UserAPIError, handle_user_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)  # type: ignore[arg-type]

    def get_db() -> Database:
        return database

    async def get_current_user(request: Request) -> User:
        return await auth(request)

    async def load_user(user_id: int, db: Database) -> User:
        user = await run_store(db.get_user, user_id)
        if user is None:
            raise NotFound("User not found", details={"id": user_id})
        return user

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/version")
    async def read_version() -> Dict[str, str]:
        return {"version": config.version}

    @app.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
    async def register_user(request: Request, db: Database = Depends(get_db)) -> RegisterResponse:
        payload = await read_payload(request, CreateUserRequest)
        user = await run_store(
            db.create_user,
            payload.username,
            payload.password,
            name=payload.name,
            email=payload.email,
        )
        token = await run_store(db.create_api_token, user.id)
        logger.info("Registered user %s (%s)", user.id, user.username)
        return RegisterResponse(**user_to_response(user).model_dump(), token=token)

    @app.post("/login", response_model=LoginResponse)
    async def login(request: Request, db: Database = Depends(get_db)) -> LoginResponse:
        payload = await read_payload(request, LoginRequest)
        user = await run_store(db.authenticate_user, payload.username, payload.password)
        if user is None:
            logger.warning("Failed login attempt for %s", payload.username)
            raise Unauthenticated("Invalid credentials")
        token = await run_store(db.create_api_token, user.id)
        logger.info("User %s signed in", user.id)
        return LoginResponse(token=token, user=user_to_response(user))

    protected_router = APIRouter()

    @protected_router.get("/user")
    async def list_users(
        request: Request,
        current_user: User = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> Dict[str, Any]:
        page_request = PageRequest.from_query(request.query_params, per_page=config.per_page)
        users, total = await run_store(fetch_user_page, db, page_request)
        result = build_page_result(
            [user_to_response(user).model_dump(mode="json") for user in users],
            total=total,
            page_request=page_request,
            base_path=str(request.url.replace(query="")),
            query_params=request.query_params.multi_items(),
        )
        return result.to_dict()

    @protected_router.get("/user/{user_id}", response_model=UserResponse)
    async def read_user(
        user_id: int,
        current_user: User = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> UserResponse:
        return user_to_response(await load_user(user_id, db))

    @protected_router.post("/user", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    async def create_user(
        request: Request,
        current_user: User = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> UserResponse:
        payload = await read_payload(request, CreateUserRequest)
        user = await run_store(
            db.create_user,
            payload.username,
            payload.password,
            name=payload.name,
            email=payload.email,
        )
        logger.info("User %s created user %s (%s)", current_user.id, user.id, user.username)
        return user_to_response(user)

    @protected_router.api_route("/user/{user_id}", methods=["PUT", "PATCH"], response_model=UserResponse)
    async def update_user(
        user_id: int,
        request: Request,
        current_user: User = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> UserResponse:
        await load_user(user_id, db)
        payload = await read_payload(request, UpdateUserRequest)
        changes = payload.changes()
        updated = await run_store(db.update_user, user_id, **changes)
        if updated is None:
            raise NotFound("User not found", details={"id": user_id})
        logger.info(
            "User %s updated user %s (fields: %s)",
            current_user.id,
            user_id,
            ", ".join(sorted(changes)) or "none",
        )
        return user_to_response(updated)

    @protected_router.delete("/user/{user_id}", response_model=UserResponse)
    async def delete_user(
        user_id: int,
        current_user: User = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> UserResponse:
        removed = await run_store(db.delete_user, user_id)
        if removed is None:
            raise NotFound("User not found", details={"id": user_id})
        logger.info("User %s deleted user %s (%s)", current_user.id, removed.id, removed.username)
        return user_to_response(removed)

    app.include_router(protected_router)

    return app


__all__ = [
    "CreateUserRequest",
    "LoginRequest",
    "UpdateUserRequest",
    "UserResponse",
    "create_app",
    "read_payload",
    "run_store",
    "user_to_response",
]
