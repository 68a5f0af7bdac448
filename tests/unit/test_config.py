"""Tests for configuration loading."""

import pytest

from docflow.config import load_config
from docflow.persistence import SQLiteWorkflowRepository, get_repository
from docflow.security import get_role_resolver


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  sweep_interval: 15
  overdue_grace: 3600
  fail_overdue_instances: true
identity:
  roles:
    rita: [reviewer, legal]
logging:
  level: DEBUG
"""
    )
    monkeypatch.setenv("DOCFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("DOCFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.engine.sweep_interval == 15
    assert config.engine.overdue_grace == 3600
    assert config.engine.fail_overdue_instances is True
    assert config.engine.auto_advance_start is True
    assert config.identity.roles == {"rita": ["reviewer", "legal"]}
    assert config.logging.level == "DEBUG"
    assert config.database_url is None


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("DOCFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("DOCFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = load_config()
    assert config.engine.sweep_interval == 60.0
    assert config.identity.roles == {}


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite://ignored.db\n")
    monkeypatch.setenv("DOCFLOW_CONFIG", str(config_path))
    monkeypatch.setenv("DOCFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")

    config = load_config()
    assert config.database_url.endswith("env.db")

    repo = get_repository(config=config)
    assert isinstance(repo, SQLiteWorkflowRepository)
    assert repo.db_path.endswith("env.db")


@pytest.mark.asyncio
async def test_role_resolver_uses_identity_section(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("identity:\n  roles:\n    rita: [reviewer]\n")
    monkeypatch.setenv("DOCFLOW_CONFIG", str(config_path))

    resolver = get_role_resolver()
    assert await resolver.roles_for("rita") == ["reviewer"]
    assert await resolver.roles_for("nobody") == []
