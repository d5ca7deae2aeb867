"""Tests for configuration loading."""

import pytest

import stepflow.persistence as persistence
from stepflow.config import load_config
from stepflow.persistence import (
    InMemoryApplicationRepository,
    SQLApplicationRepository,
    get_repository,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("STEPFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(persistence, "_repository_instance", None)


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
database_url: sqlite:///stepflow.db
engine:
  recompute_batch_size: 10
  auto_publish_decisions: true
logging:
  level: debug
"""
    )
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.database_url == "sqlite:///stepflow.db"
    assert config.engine.recompute_batch_size == 10
    assert config.engine.auto_publish_decisions is True
    assert config.engine.scheduler_scan_batch_size == 500
    assert config.logging.level == "debug"


def test_missing_config_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPFLOW_CONFIG", str(tmp_path / "absent.yaml"))

    config = load_config()
    assert config.database_url is None
    assert config.engine.recompute_batch_size == 25
    assert config.engine.auto_publish_decisions is False


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/stepflow")

    assert load_config().database_url == "postgresql://db/stepflow"


def test_get_repository_defaults_to_memory(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPFLOW_CONFIG", str(tmp_path / "absent.yaml"))

    repo = get_repository()
    assert isinstance(repo, InMemoryApplicationRepository)
    assert get_repository() is repo


def test_get_repository_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"database_url: sqlite:///{tmp_path / 'wf.db'}\n")
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))

    repo = get_repository()
    assert isinstance(repo, SQLApplicationRepository)
    assert repo.database_url == f"sqlite+aiosqlite:///{tmp_path / 'wf.db'}"


def test_get_repository_rewrites_postgres_urls():
    repo = get_repository("postgres://user:pw@localhost/stepflow")
    assert repo.database_url == "postgresql+asyncpg://user:pw@localhost/stepflow"


def test_get_repository_rejects_unknown_backend():
    with pytest.raises(ValueError, match="Unsupported database backend"):
        get_repository("mysql://localhost/stepflow")
