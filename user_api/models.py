"""Domain models for the user directory service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the directory database.

    The password hash is deliberately not part of this record; it only lives in
    the ``users`` table and is checked through :class:`~user_api.database.Database`.
    """

    id: int
    username: str
    name: Optional[str]
    email: Optional[str]
    created_at: datetime
    updated_at: datetime


__all__ = ["User"]
