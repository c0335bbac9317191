from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict, Iterator

import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import user_api.database as database_module
from user_api.api import create_app
from user_api.config import ServiceConfig
from user_api.database import Database
from user_api.models import User


PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep bcrypt but drop the work factor so suites with many users stay quick."""
    monkeypatch.setattr(
        database_module,
        "_pwd_context",
        CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=4),
    )


@pytest.fixture()
def config(tmp_path: Path) -> ServiceConfig:
    return ServiceConfig(database_path=tmp_path / "users.sqlite3", per_page=15, version="9.9.9")


@pytest.fixture()
def database(config: ServiceConfig) -> Database:
    db = Database(config.database_path)
    db.initialize()
    return db


@pytest.fixture()
def client(database: Database, config: ServiceConfig) -> Iterator[TestClient]:
    app = create_app(database=database, config=config)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def make_user(database: Database) -> Callable[..., User]:
    counter = {"value": 0}

    def _make_user(username: str | None = None, **fields: str) -> User:
        counter["value"] += 1
        username = username or f"user{counter['value']:03d}"
        fields.setdefault("name", f"User {counter['value']:03d}")
        fields.setdefault("email", f"{username}@example.com")
        return database.create_user(username, fields.pop("password", PASSWORD), **fields)

    return _make_user


@pytest.fixture()
def auth_headers(database: Database, make_user: Callable[..., User]) -> Dict[str, str]:
    """Headers for a freshly created user that owns a valid token."""
    owner = make_user("owner", name="Owner", email="owner@example.com")
    token = database.create_api_token(owner.id)
    return {"Authorization": f"Bearer {token}"}
