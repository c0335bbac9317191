from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from user_api.application import create_application
from user_api.config import ServiceConfig


def test_api_is_mounted_under_prefix(tmp_path: Path) -> None:
    config = ServiceConfig(database_path=tmp_path / "users.sqlite3", version="4.5.6")
    app = create_application(config=config)

    with TestClient(app) as client:
        assert client.get("/api/version").json() == {"version": "4.5.6"}

        registered = client.post("/api/register", json={"username": "mounted", "password": "pw"})
        assert registered.status_code == 201
        headers = {"Authorization": f"Bearer {registered.json()['token']}"}

        listing = client.get("/api/user?sort_by=username", headers=headers).json()

    assert listing["path"] == "http://testserver/api/user"
    assert listing["first_page_url"] == "http://testserver/api/user?sort_by=username&page=1"
