"""Tests for loading connection profiles from TOML files."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from db_export.database.manager import (
    MASK,
    ProfileManager,
    build_connection_url,
    connect_args,
)
from db_export.errors import CycleError, ProfileError, UnknownIdError


def _write_profiles(config_path: Path, body: str) -> None:
    connections = config_path.parent / "database" / "connections"
    (connections / "extra.toml").write_text(body, encoding="utf-8")


def test_profiles_and_environments_are_loaded(config_path: Path, sqlite_db: Path) -> None:
    manager = ProfileManager(config_path)

    assert set(manager.tree) == {"base", "base/broken", "child"}
    assert manager.tree.children_of("base") == ("base/broken", "child")
    assert manager.resolve("child")["database"] == sqlite_db.as_posix()
    assert manager.resolve("base", "broken")["database"].endswith("nowhere.db")
    assert manager.resolve("child", "broken")["database"] == sqlite_db.as_posix()


def test_environment_variables_resolve_after_inheritance(
    config_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_profiles(
        config_path,
        '[profiles.pg]\ntype = "postgresql"\npassword = "${PG_TEST_PASSWORD}"\n\n'
        '[profiles.pg-ro]\nparent = "pg"\nusername = "reader"\n',
    )
    monkeypatch.setenv("PG_TEST_PASSWORD", "s3cret")

    resolved = ProfileManager(config_path).resolve("pg-ro")

    assert resolved.password == "s3cret"
    assert resolved.username == "reader"


def test_missing_environment_variable(config_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_profiles(config_path, '[profiles.pg]\npassword = "${PG_UNSET_PASSWORD}"\n')
    monkeypatch.delenv("PG_UNSET_PASSWORD", raising=False)
    with pytest.raises(ProfileError, match="PG_UNSET_PASSWORD"):
        ProfileManager(config_path).resolve("pg")


def test_cycles_in_files_are_rejected(config_path: Path) -> None:
    _write_profiles(
        config_path,
        '[profiles.a]\nparent = "b"\n\n[profiles.b]\nparent = "a"\n',
    )
    with pytest.raises(CycleError):
        ProfileManager(config_path)


def test_add_profile_encrypts_the_password(config_path: Path) -> None:
    manager = ProfileManager(config_path)
    file_path = manager.add_profile(
        "reporting",
        parent_id="base",
        fields={"timeout": 5},
        unset_fields=["init"],
        password="hunter2",
    )

    content = file_path.read_text(encoding="utf-8")
    assert "hunter2" not in content
    table = tomllib.loads(content)["profiles"]["reporting"]
    assert table["parent"] == "base"
    assert table["unset"] == ["init"]

    reloaded = ProfileManager(config_path)
    assert reloaded.resolve("reporting")["password"] == "hunter2"
    assert reloaded.resolve("reporting")["timeout"] == 5
    assert reloaded.describe("reporting")["password"] == MASK


def test_add_profile_validates_before_writing(config_path: Path) -> None:
    manager = ProfileManager(config_path)
    with pytest.raises(ProfileError):
        manager.add_profile("base")
    with pytest.raises(ProfileError):
        manager.add_profile("base/other")
    assert sorted(path.name for path in manager.connections_path.iterdir()) == ["local.toml"]


def test_unknown_profile(config_path: Path) -> None:
    with pytest.raises(UnknownIdError):
        ProfileManager(config_path).resolve("nope")


def test_connection_url_from_fields() -> None:
    url = build_connection_url(
        {
            "type": "postgresql",
            "host": "db.internal",
            "port": 5432,
            "database": "warehouse",
            "username": "reader",
            "password": "p@ss",
            "options": {"sslmode": "require"},
        }
    )
    assert url.drivername == "postgresql+psycopg"
    assert url.host == "db.internal"
    assert url.port == 5432
    assert url.password == "p@ss"
    assert url.query == {"sslmode": "require"}


def test_connection_url_overrides() -> None:
    assert build_connection_url({"url": "sqlite:///x.db"}).database == "x.db"
    assert build_connection_url({"type": "mysql", "driver": "mysql+mysqldb"}).drivername == (
        "mysql+mysqldb"
    )
    with pytest.raises(ProfileError):
        build_connection_url({"type": "oracle"})


def test_connect_args_carry_the_timeout() -> None:
    assert connect_args({"type": "sqlite", "timeout": 5}) == {"timeout": 5}
    assert connect_args({"type": "postgresql", "timeout": 5}) == {"connect_timeout": 5}
    assert connect_args({"type": "postgresql"}) == {}
