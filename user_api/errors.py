"""Error taxonomy surfaced by the HTTP API."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class UserAPIError(Exception):
    """Base error carrying the HTTP status and a machine readable code."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class Unauthenticated(UserAPIError):
    code = "unauthenticated"
    status_code = 401


class ValidationFailed(UserAPIError):
    code = "validation_failed"
    status_code = 422


class Conflict(UserAPIError):
    code = "conflict"
    status_code = 409


class NotFound(UserAPIError):
    code = "not_found"
    status_code = 404


async def handle_user_api_error(_: Request, exc: UserAPIError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


__all__ = [
    "Conflict",
    "NotFound",
    "Unauthenticated",
    "UserAPIError",
    "ValidationFailed",
    "handle_user_api_error",
]
