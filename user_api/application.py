"""Application factory that serves the user API under ``/api``."""
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from .api import create_app as create_api_app
from .config import ServiceConfig, load_service_config
from .database import Database
from .security import APITokenAuth

API_PREFIX = "/api"


def create_application(*, config: Optional[ServiceConfig] = None) -> FastAPI:
    """Create the root ASGI application with the API mounted at ``/api``."""

    if config is None:
        config = load_service_config()

    database = Database(config.database_path)
    database.initialize()

    api_app = create_api_app(database=database, auth=APITokenAuth(database), config=config)

    app = FastAPI(
        title=config.title,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.database = database
    app.state.api = api_app

    app.mount(API_PREFIX, api_app)

    return app


__all__ = ["API_PREFIX", "create_application"]
