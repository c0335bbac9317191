"""Configuration management for the user directory service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

DEFAULT_PER_PAGE = 15
DEFAULT_VERSION = "1.0.0"
DEFAULT_TITLE = "User Directory API"


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_project_root() / "data" / "users.sqlite3").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_project_root() / "config" / "service.yaml").resolve(strict=False)


def _parse_per_page(value: object) -> int:
    try:
        per_page = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"per_page must be an integer, got {value!r}") from exc
    if per_page < 1:
        raise ValueError("per_page must be at least 1")
    return per_page


@dataclass(frozen=True)
class ServiceConfig:
    """Runtime settings for the API and the CLI."""

    database_path: Path
    per_page: int = DEFAULT_PER_PAGE
    version: str = DEFAULT_VERSION
    title: str = DEFAULT_TITLE

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "ServiceConfig":
        """Create a :class:`ServiceConfig` from raw dictionary data."""
        raw_db_path = data.get("database_path")
        if raw_db_path:
            expanded = Path(str(raw_db_path)).expanduser()
            if not expanded.is_absolute() and base_path is not None:
                expanded = base_path / expanded
            database_path = expanded.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        return ServiceConfig(
            database_path=database_path,
            per_page=_parse_per_page(data.get("per_page", DEFAULT_PER_PAGE)),
            version=str(data.get("version") or DEFAULT_VERSION),
            title=str(data.get("title") or DEFAULT_TITLE),
        )

    def with_env_overrides(self, environ: Mapping[str, str]) -> "ServiceConfig":
        """Apply ``USERAPI_*`` environment variables on top of this configuration."""
        config = self
        db_path = environ.get("USERAPI_DB_PATH")
        if db_path:
            config = replace(config, database_path=resolve_database_path(db_path))
        per_page = environ.get("USERAPI_PER_PAGE")
        if per_page:
            config = replace(config, per_page=_parse_per_page(per_page))
        version = environ.get("USERAPI_VERSION")
        if version:
            config = replace(config, version=version.strip())
        return config


def load_service_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServiceConfig:
    """Load settings from YAML (when present) and apply environment overrides."""
    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("USERAPI_CONFIG"))

    raw: Dict[str, object] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw = loaded.get("service", loaded) or {}

    config = ServiceConfig.from_dict(raw, base_path=path.parent)
    return config.with_env_overrides(env)


__all__ = [
    "DEFAULT_PER_PAGE",
    "ServiceConfig",
    "load_service_config",
    "resolve_config_path",
    "resolve_database_path",
]
