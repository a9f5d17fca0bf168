"""
Unit tests for the relayd CLI.
"""

import json
import sys
from datetime import datetime, timezone

import pytest
from loguru import logger
from typer.testing import CliRunner

from relay_store.buffer import DeadLetterQueue, Message, parse_payload
from relayd.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RELAY_CONFIG", raising=False)
    monkeypatch.delenv("RELAY_PST_PATH", raising=False)
    yield
    # commands point loguru at the runner's stream
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def config_file(tmp_path):
    p = tmp_path / "config.json"
    p.write_text(
        json.dumps(
            {
                "api": {"url": "http://127.0.0.1:9/ingest", "timeout": 0.5},
                "buffer": {
                    "max_size": 10,
                    "persist_file": str(tmp_path / "data" / "buffer.json"),
                    "dead_letter_file": str(tmp_path / "data" / "dlq.ndjson"),
                },
                "logging": {"level": "ERROR"},
            }
        )
    )
    return p


def test_ingest_then_stats(config_file, tmp_path):
    r1 = runner.invoke(app, ["ingest", "sensors/kitchen", '{"temp": 21.5}', "-c", str(config_file)])
    assert r1.exit_code == 0, r1.output
    assert r1.stdout.strip().endswith("-sensors/kitchen")

    r2 = runner.invoke(app, ["ingest", "switch", "ON", "-c", str(config_file)])
    assert r2.exit_code == 0, r2.output

    stored = json.loads((tmp_path / "data" / "buffer.json").read_text())
    assert [d["payload"] for d in stored] == [{"temp": 21.5}, {"raw_payload": "ON"}]

    r3 = runner.invoke(app, ["stats", "-c", str(config_file)])
    assert r3.exit_code == 0, r3.output
    stats = json.loads(r3.stdout)
    assert stats["total_messages"] == 2
    assert stats["capacity"] == 10
    assert stats["circuit_breaker"] == "closed"


def test_ingest_storage_error_exits_nonzero(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    cfg = tmp_path / "bad.json"
    cfg.write_text(
        json.dumps(
            {
                "buffer": {"persist_file": str(blocker / "buffer.json")},
                "logging": {"level": "CRITICAL"},
            }
        )
    )
    result = runner.invoke(app, ["ingest", "t", "{}", "-c", str(cfg)])
    assert result.exit_code == 1


def test_sweep_on_empty_buffer(config_file):
    result = runner.invoke(app, ["sweep", "-c", str(config_file)])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"expired_messages": 0, "expired_backoff": 0}


def test_dlq_replay_prints_records(config_file, tmp_path):
    DeadLetterQueue(tmp_path / "data" / "dlq.ndjson").save(
        [
            Message(
                id="1-t",
                topic="t",
                payload=parse_payload(b'{"a": 1}'),
                received_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        ],
        "client_error",
        "HTTP 400",
    )

    result = runner.invoke(app, ["dlq-replay", "-c", str(config_file)])
    assert result.exit_code == 0, result.output
    [line] = result.stdout.strip().splitlines()
    rec = json.loads(line)
    assert rec["reason"] == "client_error"
    assert rec["items"][0]["id"] == "1-t"


def test_dlq_replay_requires_configured_file(tmp_path):
    cfg = tmp_path / "nodlq.json"
    cfg.write_text(json.dumps({"logging": {"level": "CRITICAL"}}))
    result = runner.invoke(app, ["dlq-replay", "-c", str(cfg)])
    assert result.exit_code == 1
