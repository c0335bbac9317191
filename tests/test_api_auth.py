from __future__ import annotations

import time
from typing import Callable, Dict

import anyio
import httpx
import pytest
from fastapi.testclient import TestClient

import user_api.database as database_module
from user_api.api import create_app
from user_api.config import ServiceConfig
from user_api.database import Database
from user_api.models import User

from conftest import PASSWORD


def test_version_is_public(client: TestClient) -> None:
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": "9.9.9"}


def test_health_is_public(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


@pytest.mark.parametrize(
    ("method", "path", "body"),
    [
        ("GET", "/user", None),
        ("GET", "/user/{id}", None),
        ("POST", "/user", {"username": "newbie", "password": "pw"}),
        ("POST", "/user", {"not": "valid"}),
        ("PUT", "/user/{id}", {"name": "Renamed"}),
        ("PATCH", "/user/{id}", {"name": "Renamed"}),
        ("PATCH", "/user/{id}", {"username": ""}),
        ("DELETE", "/user/{id}", None),
        ("GET", "/user/999999", None),
        ("GET", "/user/not-a-number", None),
    ],
)
def test_protected_routes_reject_missing_token(
    client: TestClient,
    make_user: Callable[..., User],
    database: Database,
    method: str,
    path: str,
    body: Dict[str, str] | None,
) -> None:
    user = make_user()
    url = path.format(id=user.id)

    response = client.request(method, url, json=body)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthenticated"
    assert response.headers["www-authenticate"] == "Bearer"
    assert database.get_user(user.id) == user
    assert database.get_user_by_username("newbie") is None


def test_malformed_body_without_token_reports_unauthenticated(client: TestClient) -> None:
    response = client.post(
        "/user",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 401


@pytest.mark.parametrize(
    "header",
    ["Bearer uat_doesnotexist", "Bearer", "Basic dXNlcjpwYXNz", "uat_missing_scheme"],
)
def test_protected_routes_reject_invalid_token(client: TestClient, header: str) -> None:
    response = client.get("/user", headers={"Authorization": header})
    assert response.status_code == 401


def test_register_creates_user_and_issues_token(client: TestClient) -> None:
    response = client.post(
        "/register",
        json={"username": "rita", "password": PASSWORD, "email": "rita@example.com"},
    )

    assert response.status_code == 201, response.text
    payload = response.json()
    assert payload["username"] == "rita"
    assert payload["name"] == "rita"
    assert payload["email"] == "rita@example.com"
    assert "password" not in payload

    listing = client.get("/user", headers={"Authorization": f"Bearer {payload['token']}"})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1


@pytest.mark.parametrize(
    "body",
    [
        {"password": PASSWORD},
        {"username": "sam"},
        {"username": "", "password": PASSWORD},
        {"username": "   ", "password": PASSWORD},
        {"username": "sam", "password": ""},
        {"username": "sam", "password": PASSWORD, "email": "not-an-email"},
        {"username": 12, "password": PASSWORD},
    ],
)
def test_register_validation(client: TestClient, body: Dict[str, object]) -> None:
    response = client.post("/register", json=body)

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "validation_failed"
    assert PASSWORD not in response.text


def test_register_duplicate_username_is_conflict(client: TestClient, make_user: Callable[..., User]) -> None:
    make_user("taken")
    response = client.post("/register", json={"username": "taken", "password": PASSWORD})
    assert response.status_code == 409


def test_login_returns_token(client: TestClient, make_user: Callable[..., User]) -> None:
    user = make_user("uma")

    response = client.post("/login", json={"username": "uma", "password": PASSWORD})

    assert response.status_code == 200
    payload = response.json()
    assert payload["token_type"] == "bearer"
    assert payload["user"]["id"] == user.id
    assert "password" not in payload["user"]

    me = client.get(f"/user/{user.id}", headers={"Authorization": f"Bearer {payload['token']}"})
    assert me.status_code == 200


def test_login_with_wrong_password(client: TestClient, make_user: Callable[..., User]) -> None:
    make_user("victor")

    response = client.post("/login", json={"username": "victor", "password": "wrong"})

    assert response.status_code == 401
    assert "token" not in response.json()


def test_login_requires_credentials(client: TestClient) -> None:
    assert client.post("/login", json={"username": "victor"}).status_code == 422


class _SlowHashContext:
    """Wraps the real hashing context and stalls each verification."""

    def __init__(self, inner, delay: float) -> None:
        self._inner = inner
        self._delay = delay

    def hash(self, password: str) -> str:
        return self._inner.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        time.sleep(self._delay)
        return self._inner.verify(password, hashed)


def test_login_hashing_runs_off_the_event_loop(
    database: Database,
    config: ServiceConfig,
    make_user: Callable[..., User],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    make_user("yolanda")
    monkeypatch.setattr(
        database_module,
        "_pwd_context",
        _SlowHashContext(database_module._pwd_context, delay=0.5),
    )
    app = create_app(database=database, config=config)
    results: Dict[str, object] = {}

    async def scenario() -> None:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as async_client:

            async def login() -> None:
                response = await async_client.post(
                    "/login",
                    json={"username": "yolanda", "password": PASSWORD},
                )
                results["status"] = response.status_code

            async with anyio.create_task_group() as tasks:
                started = time.perf_counter()
                tasks.start_soon(login)
                await anyio.sleep(0.05)
                results["elapsed"] = time.perf_counter() - started

    anyio.run(scenario)

    assert results["status"] == 200
    assert results["elapsed"] < 0.4
