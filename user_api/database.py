"""SQLite-backed persistence for users and their bearer tokens."""
from __future__ import annotations

import hashlib
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from passlib.context import CryptContext

from .errors import Conflict
from .models import User

logger = logging.getLogger("userapi.database")

SORTABLE_FIELDS = ("id", "username", "name", "email", "created_at", "updated_at")

TOKEN_PREFIX = "uat_"

SQLITE_MAX_INTEGER = 2**63 - 1
SQLITE_MIN_INTEGER = -(2**63)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    # Fixed width so that lexical ORDER BY matches chronological order.
    return value.isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_api_token() -> str:
    return TOKEN_PREFIX + secrets.token_urlsafe(32)


def _hash_api_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _is_storable_id(value: int) -> bool:
    return SQLITE_MIN_INTEGER <= value <= SQLITE_MAX_INTEGER


def _normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    cleaned = email.strip()
    return cleaned or None


def _conflict_from_integrity_error(exc: sqlite3.IntegrityError) -> Conflict:
    message = str(exc)
    if "users.email" in message:
        return Conflict("A user with that email already exists", details={"field": "email"})
    return Conflict("A user with that username already exists", details={"field": "username"})


class Database:
    """Simple wrapper around SQLite for persisting users and API tokens."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    name TEXT,
                    email TEXT UNIQUE COLLATE NOCASE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS api_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    token_hash TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    last_used_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_api_tokens_user_id ON api_tokens(user_id);
                CREATE INDEX IF NOT EXISTS idx_users_name ON users(name, id);
                CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at, id);
                CREATE INDEX IF NOT EXISTS idx_users_updated_at ON users(updated_at, id);
                """
            )
        logger.debug("User schema ready at %s", self._path)

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        username: str,
        password: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        """Create a new user. ``name`` defaults to the username when omitted."""

        normalized_username = username.strip()
        if not normalized_username:
            raise ValueError("Username must not be empty")
        if not password:
            raise ValueError("Password must not be empty")

        timestamp = _serialize_datetime(_current_timestamp())
        display_name = name.strip() if name is not None else normalized_username
        password_hash = _hash_password(password)

        with self._connection() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (username, name, email, password_hash, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_username,
                        display_name,
                        _normalize_email(email),
                        password_hash,
                        timestamp,
                        timestamp,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise _conflict_from_integrity_error(exc) from exc
            user_id = cursor.lastrowid

        user = self.get_user(int(user_id))
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        if not _is_storable_id(user_id):
            return None
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ?",
                (username.strip(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def authenticate_user(self, username: str, password: str) -> Optional[User]:
        user = self.get_user_by_username(username)
        if user is None or not self.verify_user_password(user.id, password):
            return None
        return user

    def verify_user_password(self, user_id: int, password: str) -> bool:
        """Return ``True`` if the supplied password matches the stored hash."""

        if not _is_storable_id(user_id):
            return False
        with self._connection() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()

        if row is None:
            return False
        return _verify_password(password, str(row["password_hash"]))

    def update_user(self, user_id: int, **fields: object) -> Optional[User]:
        """Apply a partial update and return the refreshed user.

        Only the keys present in ``fields`` are written. Returns ``None`` when the
        user does not exist.
        """

        if not _is_storable_id(user_id):
            return None

        allowed = {
            "username": "username",
            "name": "name",
            "email": "email",
            "password": "password_hash",
        }

        updates: List[str] = []
        values: List[object] = []
        for key, column in allowed.items():
            if key not in fields:
                continue
            value = fields[key]
            if key == "username":
                value = str(value).strip()
                if not value:
                    raise ValueError("Username must not be empty")
            elif key == "password":
                if not value:
                    raise ValueError("Password must not be empty")
                value = _hash_password(str(value))
            elif key == "email":
                value = _normalize_email(value)  # type: ignore[arg-type]
            elif key == "name" and value is not None:
                value = str(value).strip()
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return self.get_user(user_id)

        updates.append("updated_at = ?")
        values.append(_serialize_datetime(_current_timestamp()))
        values.append(user_id)
        query = f"UPDATE users SET {', '.join(updates)} WHERE id = ?"

        with self._connection() as conn:
            try:
                cursor = conn.execute(query, values)
            except sqlite3.IntegrityError as exc:
                raise _conflict_from_integrity_error(exc) from exc
            if cursor.rowcount == 0:
                return None

        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> Optional[User]:
        """Remove a user and return the record as it was before deletion."""

        if not _is_storable_id(user_id):
            return None
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(row)

    def count_users(self) -> int:
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM users").fetchone()
        return int(row["total"])

    def list_users(
        self,
        *,
        sort_by: str = "id",
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[User]:
        """Return users in a total order: ``sort_by`` first, ``id`` as tie-break.

        The direction applies to both keys so a descending listing is the exact
        reverse of the ascending one.
        """

        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort users by '{sort_by}'")
        if offset > SQLITE_MAX_INTEGER:
            return []

        direction = "DESC" if descending else "ASC"
        order_by = f"id {direction}" if sort_by == "id" else f"{sort_by} {direction}, id {direction}"
        query = f"SELECT * FROM users ORDER BY {order_by}"
        params: List[object] = []
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, max(offset, 0)])

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Token management
    # ------------------------------------------------------------------
    def create_api_token(self, user_id: int) -> str:
        """Issue a new bearer token for ``user_id``; only its digest is stored."""

        token = _generate_api_token()
        with self._connection() as conn:
            try:
                conn.execute(
                    "INSERT INTO api_tokens (user_id, token_hash, created_at) VALUES (?, ?, ?)",
                    (user_id, _hash_api_token(token), _serialize_datetime(_current_timestamp())),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("User not found") from exc
        return token

    def get_user_by_api_token(self, token: str) -> Optional[User]:
        if not token.startswith(TOKEN_PREFIX):
            return None

        token_hash = _hash_api_token(token)
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT users.* FROM api_tokens
                  JOIN users ON users.id = api_tokens.user_id
                 WHERE api_tokens.token_hash = ?
                """,
                (token_hash,),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE api_tokens SET last_used_at = ? WHERE token_hash = ?",
                (_serialize_datetime(_current_timestamp()), token_hash),
            )
        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            username=str(row["username"]),
            name=row["name"],
            email=row["email"],
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = ["Database", "SORTABLE_FIELDS", "SQLITE_MAX_INTEGER", "TOKEN_PREFIX"]
