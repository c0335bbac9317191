"""Bearer token authentication for the user API."""
from __future__ import annotations

import anyio
from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .database import Database
from .errors import Unauthenticated
from .models import User


class APITokenAuth:
    """Resolve ``Authorization: Bearer <token>`` to the owning :class:`User`.

    Instances are used as FastAPI dependencies. Any failure raises
    :class:`Unauthenticated` before the route body, path values or store are
    touched.
    """

    def __init__(self, database: Database):
        self._database = database
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> User:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise Unauthenticated("Missing bearer token")

        provided = credentials.credentials.strip()
        if not provided:
            raise Unauthenticated("Missing bearer token")

        user = await anyio.to_thread.run_sync(self._database.get_user_by_api_token, provided)
        if user is None:
            raise Unauthenticated("Invalid or expired token")

        request.state.user = user
        return user


__all__ = ["APITokenAuth"]
