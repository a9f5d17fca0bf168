"""
Unit tests for relayd settings loading.
"""

import json
from datetime import timedelta
from pathlib import Path

import pytest

from relayd.config import RelaySettings, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for var in ("RELAY_CONFIG", "RELAY_PST_PATH", "RELAY_API__KEY", "RELAY_API__URL", "RELAY_BUFFER__MAX_SIZE"):
        monkeypatch.delenv(var, raising=False)


def _write(tmp_path, data) -> Path:
    p = tmp_path / "config.json"
    p.write_text(json.dumps(data))
    return p


def test_defaults_when_file_missing(tmp_path):
    settings = load_settings(tmp_path / "missing.json")
    assert settings.buffer.max_size == 10_000
    assert settings.buffer.flush_interval == 10.0
    assert settings.buffer.max_retries == 5
    assert settings.buffer.retention == timedelta(days=7)
    assert settings.circuit_breaker.max_failures == 5
    assert settings.circuit_breaker.timeout == 30.0
    assert settings.topics == []


def test_loads_json_file(tmp_path):
    path = _write(
        tmp_path,
        {
            "api": {"url": "https://api.example.com/ingest", "key": "secret"},
            "buffer": {"max_size": 50, "persist_file": "state/buf.json", "message_retention_days": 2},
            "circuit_breaker": {"max_failures": 2, "timeout": 5},
            "topics": ["sensors/#"],
            "logging": {"level": "DEBUG"},
        },
    )
    settings = load_settings(path)

    assert settings.api.url == "https://api.example.com/ingest"
    assert settings.api.key == "secret"
    assert settings.buffer.max_size == 50
    assert settings.buffer.retention == timedelta(days=2)
    assert settings.circuit_breaker.max_failures == 2
    assert settings.topics == ["sensors/#"]
    assert settings.logging.level == "DEBUG"


def test_config_path_from_env(tmp_path, monkeypatch):
    path = _write(tmp_path, {"buffer": {"max_size": 3}})
    monkeypatch.setenv("RELAY_CONFIG", str(path))
    assert load_settings().buffer.max_size == 3


def test_nested_env_override(monkeypatch):
    monkeypatch.setenv("RELAY_API__KEY", "from-env")
    monkeypatch.setenv("RELAY_BUFFER__MAX_SIZE", "42")
    settings = RelaySettings()
    assert settings.api.key == "from-env"
    assert settings.buffer.max_size == 42


def test_file_values_win_over_env(tmp_path, monkeypatch):
    path = _write(tmp_path, {"api": {"url": "https://file.example.com"}})
    monkeypatch.setenv("RELAY_API__URL", "https://env.example.com")
    monkeypatch.setenv("RELAY_API__KEY", "from-env")

    settings = load_settings(path)
    assert settings.api.url == "https://file.example.com"
    assert settings.api.key == "from-env"


def test_pst_path_relocates_buffer_file(tmp_path, monkeypatch):
    monkeypatch.setenv("RELAY_PST_PATH", str(tmp_path / "pst"))
    settings = load_settings(tmp_path / "missing.json")
    assert Path(settings.buffer.persist_file) == tmp_path / "pst" / "relay-buffer.json"
