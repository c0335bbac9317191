from __future__ import annotations

from pathlib import Path

import pytest

from user_api.config import DEFAULT_PER_PAGE, ServiceConfig, load_service_config


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    config = load_service_config(tmp_path / "missing.yaml", environ={})

    assert config.per_page == DEFAULT_PER_PAGE
    assert config.database_path.name == "users.sqlite3"


def test_yaml_file_is_loaded_relative_to_its_directory(tmp_path: Path) -> None:
    config_file = tmp_path / "service.yaml"
    config_file.write_text(
        "service:\n  database_path: data/app.sqlite3\n  per_page: 25\n  version: '2.1.0'\n",
        encoding="utf-8",
    )

    config = load_service_config(config_file, environ={})

    assert config.database_path == (tmp_path / "data" / "app.sqlite3").resolve()
    assert config.per_page == 25
    assert config.version == "2.1.0"


def test_environment_overrides_file(tmp_path: Path) -> None:
    config_file = tmp_path / "service.yaml"
    config_file.write_text("per_page: 25\nversion: '2.1.0'\n", encoding="utf-8")
    environ = {
        "USERAPI_DB_PATH": str(tmp_path / "override.sqlite3"),
        "USERAPI_PER_PAGE": "5",
        "USERAPI_VERSION": "3.0.0",
    }

    config = load_service_config(config_file, environ=environ)

    assert config.database_path == (tmp_path / "override.sqlite3").resolve()
    assert config.per_page == 5
    assert config.version == "3.0.0"


def test_config_path_from_environment(tmp_path: Path) -> None:
    config_file = tmp_path / "custom.yaml"
    config_file.write_text("per_page: 7\n", encoding="utf-8")

    config = load_service_config(environ={"USERAPI_CONFIG": str(config_file)})

    assert config.per_page == 7


@pytest.mark.parametrize("value", [0, -1, "many"])
def test_invalid_per_page_is_rejected(tmp_path: Path, value: object) -> None:
    with pytest.raises(ValueError):
        ServiceConfig.from_dict({"per_page": value}, base_path=tmp_path)


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    config_file = tmp_path / "service.yaml"
    config_file.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_service_config(config_file, environ={})
