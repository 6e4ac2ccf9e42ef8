"""Tests for layered settings."""

import pytest

from factorydash.config import CONFIG_PATH_ENV, Settings


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)


def test_defaults_without_any_file():
    settings = Settings()
    assert settings.server.port == 3001
    assert settings.workflow_engine.start_path == "/webhook/master-pipeline"
    assert settings.auth.jwt_algorithm == "HS256"


def test_yaml_file_and_environment_priority(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text(
        "workflow_engine:\n"
        "  base_url: http://engine.local:5678/\n"
        "  timeout_seconds: 3\n"
        "server:\n"
        "  port: 4000\n"
    )
    monkeypatch.setenv("FACTORYDASH_SERVER__PORT", "5000")

    settings = Settings()

    assert settings.workflow_engine.base_url == "http://engine.local:5678"
    assert settings.workflow_engine.timeout_seconds == 3.0
    assert settings.server.port == 5000


def test_config_path_can_be_overridden(tmp_path, monkeypatch):
    custom = tmp_path / "prod.yaml"
    custom.write_text("fanout:\n  queue_size: 8\n")
    monkeypatch.setenv(CONFIG_PATH_ENV, str(custom))

    assert Settings().fanout.queue_size == 8


def test_yaml_must_be_a_mapping(tmp_path):
    (tmp_path / "config.yaml").write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        Settings()
