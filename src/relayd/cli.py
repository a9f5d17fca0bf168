from __future__ import annotations

import json
import signal
import sys
import threading
from dataclasses import asdict
from typing import Optional

import typer
from loguru import logger

from relay_store import DeadLetterQueue, StorageError
from relay_store.buffer.types import MessageRecord

from .config import RelaySettings, load_settings
from .logs import configure_logging
from .service import build_buffer, build_relay, build_sender

app = typer.Typer(help="Store-and-forward relay (buffer, delivery, maintenance)")


def config_opt() -> Optional[str]:
    return typer.Option(None, "--config", "-c", envvar="RELAY_CONFIG", help="JSON config file")


def _settings(config: Optional[str]) -> RelaySettings:
    settings = load_settings(config)
    configure_logging(settings.logging.level)
    return settings


@app.command()
def run(config: Optional[str] = config_opt()):
    """Run the delivery, retention and stats routines until interrupted."""
    settings = _settings(config)
    logger.info(f"Configuration loaded. Buffer file: {settings.buffer.persist_file}")

    stop = threading.Event()

    def _on_signal(signum, _frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    with build_sender(settings) as sender:
        with build_relay(settings, sender):
            stop.wait()


@app.command()
def flush(config: Optional[str] = config_opt()):
    """Run one delivery cycle and print its report."""
    settings = _settings(config)
    with build_sender(settings) as sender:
        relay = build_relay(settings, sender)
        report = relay.flush()
    out = asdict(report)
    out["outcome"] = report.outcome.value
    typer.echo(json.dumps(out, indent=2))


@app.command()
def sweep(config: Optional[str] = config_opt()):
    """Run one retention sweep."""
    settings = _settings(config)
    with build_sender(settings) as sender:
        result = build_relay(settings, sender).cleanup()
    typer.echo(
        json.dumps(
            {
                "expired_messages": len(result.expired_messages),
                "expired_backoff": result.expired_backoff,
            },
            indent=2,
        )
    )


@app.command()
def stats(config: Optional[str] = config_opt()):
    """Print statistics of the persisted buffer."""
    settings = _settings(config)
    typer.echo(json.dumps(build_buffer(settings).stats().to_dict(), indent=2))


@app.command()
def ingest(
    topic: str = typer.Argument(..., help="Origin topic"),
    payload: str = typer.Argument(..., help="Event body (JSON object or raw text)"),
    config: Optional[str] = config_opt(),
):
    """Buffer one event as if it arrived from the bus."""
    settings = _settings(config)
    with build_sender(settings) as sender:
        relay = build_relay(settings, sender)
        try:
            msg = relay.ingest(topic, payload.encode("utf-8"))
        except StorageError as e:
            logger.error(f"Failed to add message to buffer: {e}")
            sys.exit(1)
    typer.echo(msg.id)


@app.command("dlq-replay")
def dlq_replay(
    max_records: int = typer.Option(100, "--max-records", help="Records to print"),
    config: Optional[str] = config_opt(),
):
    """Print dead-lettered messages as NDJSON."""
    settings = _settings(config)
    path = settings.buffer.dead_letter_file
    if not path:
        logger.error("No dead_letter_file configured")
        sys.exit(1)
    for rec in DeadLetterQueue(path, mkdirs=False).replay(max_records):
        typer.echo(
            json.dumps(
                {
                    "ts": rec.ts,
                    "reason": rec.reason,
                    "error": rec.error,
                    "items": [MessageRecord.from_message(m).model_dump(mode="json") for m in rec.items],
                },
                default=str,
            )
        )


if __name__ == "__main__":
    app()
