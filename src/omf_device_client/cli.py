"""Click CLI for the OMF device client.

Entry point registered in ``pyproject.toml`` as ``omf-device-client``.

Subcommands::

    omf-device-client                  # provision, then stream readings
    omf-device-client secrets init     # create encrypted secrets file
    omf-device-client secrets set KEY  # store a secret
    omf-device-client secrets list     # list secret names
    omf-device-client secrets rekey    # re-encrypt with a new key

While streaming, ``SIGUSR1`` pauses/resumes sending and ``SIGINT`` /
``SIGTERM`` stop the client after the current tick.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import click
import orjson

from omf_device_client import __version__
from omf_device_client.config import AppConfig, LogFileConfig, load_config
from omf_device_client.errors import ConfigurationError
from omf_device_client.redactor import SecretRedactingFilter, producer_secrets
from omf_device_client.secrets import SecretStore, SecretStoreError
from omf_device_client.sensors import RandomSensorSource
from omf_device_client.sequencer import ProvisioningSequencer
from omf_device_client.streaming import RunState, StreamingLoop
from omf_device_client.transport import OmfTransport, RequestsHttpClient

logger = logging.getLogger("omf_device_client")

DEFAULT_CONFIG = "/etc/omf/config.json"
DEFAULT_SECRETS_FILE = "/etc/omf/.secrets.enc"
DRY_RUN_TICKS = 5


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(
    level: str,
    secret_values: list[str] | None = None,
    log_file_config: Optional[LogFileConfig] = None,
) -> None:
    """JSON logs on stderr, plus an optional rotating file; secrets redacted on every handler."""
    root = logging.getLogger()
    level_name = "WARNING" if level.lower() == "warn" else level.upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file_config and log_file_config.enabled:
        Path(log_file_config.path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            filename=log_file_config.path,
            maxBytes=log_file_config.max_size_bytes,
            backupCount=log_file_config.backup_count,
        ))

    redactor = SecretRedactingFilter(secret_values)
    for handler in handlers:
        handler.setFormatter(_JsonFormatter())
        handler.addFilter(redactor)
        root.addHandler(handler)


def _secrets_file() -> str:
    return os.environ.get("OMF_SECRETS_FILE", DEFAULT_SECRETS_FILE)


# ── main CLI group ──────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.option("--dry-run", is_flag=True,
              help=f"Provision, stream {DRY_RUN_TICKS} ticks, then exit.")
@click.option("--ticks", type=click.IntRange(min=1), default=None,
              help="Stop after this many ticks.")
@click.option("--target-url", default=None, help="Override ${OMF_TARGET_URL}.")
@click.option("--producer-token", default=None, help="Override ${OMF_PRODUCER_TOKEN}.")
@click.option("--cloud/--no-cloud", "cloud_mode", default=None,
              help="Cloud mode: skip static types, assets and links.")
@click.option("--interval", type=click.FloatRange(min=0), default=None,
              help="Seconds between data messages.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    validate_only: bool,
    dry_run: bool,
    ticks: Optional[int],
    target_url: Optional[str],
    producer_token: Optional[str],
    cloud_mode: Optional[bool],
    interval: Optional[float],
) -> None:
    """OMF device client: register types and containers, then stream readings."""
    if ctx.invoked_subcommand is not None:
        return

    cfg_path = config_path or os.environ.get("OMF_CONFIG", DEFAULT_CONFIG)

    overrides: dict[str, str] = {}
    if target_url:
        overrides["OMF_TARGET_URL"] = target_url
    if producer_token:
        overrides["OMF_PRODUCER_TOKEN"] = producer_token

    try:
        secrets_dict = _load_secrets_if_configured()
        cfg = load_config(cfg_path, overrides=overrides, secrets=secrets_dict)
        cfg = _apply_runtime_overrides(cfg, cloud_mode, interval)
    except (ConfigurationError, SecretStoreError) as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    effective_level = log_level or os.environ.get("OMF_LOG_LEVEL") or cfg.logging.level
    secret_values = producer_secrets(cfg.producer, cfg.logging.redact_patterns)
    _setup_logging(effective_level, secret_values, cfg.logging.file)

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting omf-device-client %s (device=%s, target=%s)",
        __version__,
        cfg.producer.device_name,
        cfg.producer.target_url,
    )

    max_ticks = DRY_RUN_TICKS if dry_run and ticks is None else ticks
    asyncio.run(_run_client(cfg, max_ticks))


def _load_secrets_if_configured() -> dict[str, str]:
    key_file = os.environ.get("OMF_KEY_FILE")
    secrets_file = _secrets_file()
    if key_file and Path(key_file).exists() and Path(secrets_file).exists():
        return SecretStore.open(secrets_file, key_file).load()
    return {}


def _apply_runtime_overrides(
    cfg: AppConfig, cloud_mode: Optional[bool], interval: Optional[float]
) -> AppConfig:
    changes: dict[str, object] = {}
    if cloud_mode is not None:
        changes["cloud_mode"] = cloud_mode
    if interval is not None:
        changes["send_interval_seconds"] = interval
    if changes:
        cfg.producer = dataclasses.replace(cfg.producer, **changes).validate()
    return cfg


# ── async client ────────────────────────────────────────────────────


async def _run_client(cfg: AppConfig, max_ticks: Optional[int]) -> None:
    """Provision once, then stream until shutdown."""
    loop = asyncio.get_running_loop()
    producer = cfg.producer

    http = RequestsHttpClient(
        verify_tls=producer.verify_tls,
        timeout_seconds=producer.request_timeout_seconds,
    )
    transport = OmfTransport(producer, http)
    sensors = RandomSensorSource(producer.data_properties)
    run_state = RunState(enabled=True)
    streamer = StreamingLoop(
        producer,
        transport,
        sensors,
        run_state,
        max_ticks=max_ticks,
    )

    def _handle_shutdown() -> None:
        logger.info("Received shutdown signal")
        streamer.request_shutdown()

    def _handle_toggle() -> None:
        enabled = run_state.toggle()
        logger.info("Sending %s", "resumed" if enabled else "paused")

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_shutdown)
        except NotImplementedError:
            pass  # Windows
    if hasattr(signal, "SIGUSR1"):
        try:
            loop.add_signal_handler(signal.SIGUSR1, _handle_toggle)
        except NotImplementedError:
            pass

    try:
        await asyncio.to_thread(ProvisioningSequencer(producer, transport).run)
        sensors.initialize()
        logger.info(
            "Sending live data every %.1f second(s) for device %r",
            producer.send_interval_seconds,
            producer.device_name,
        )
        await streamer.run()
    finally:
        http.close()
        logger.info("Client shut down (%d data messages sent)", streamer.sent)


# ── secrets subcommand group ────────────────────────────────────────


@main.group()
def secrets() -> None:
    """Manage the encrypted secrets file."""


@secrets.command("init")
@click.option("--output", default=None, help="Path for the encrypted file.")
@click.option("--key-file", required=True, help="Path for the master key.")
def secrets_init(output: Optional[str], key_file: str) -> None:
    """Create an empty encrypted secrets file and key."""
    path = output or _secrets_file()
    SecretStore.init(path, key_file)
    click.echo(f"Initialized: {path} (key: {key_file})")


@secrets.command("set")
@click.argument("key")
@click.option("--value", prompt=True, hide_input=True, help="Secret value.")
@click.option("--key-file", required=True, help="Path to the master key.")
def secrets_set(key: str, value: str, key_file: str) -> None:
    """Store a secret in the encrypted file."""
    SecretStore.open(_secrets_file(), key_file).set(key, value)
    click.echo(f"Set: {key}")


@secrets.command("list")
@click.option("--key-file", required=True, help="Path to the master key.")
def secrets_list(key_file: str) -> None:
    """List stored secret names (values are never shown)."""
    for name in SecretStore.open(_secrets_file(), key_file).names():
        click.echo(name)


@secrets.command("rekey")
@click.option("--key-file", required=True, help="Current master key path.")
@click.option("--new-key-file", required=True, help="New master key path.")
def secrets_rekey(key_file: str, new_key_file: str) -> None:
    """Re-encrypt the secrets store with a new key."""
    SecretStore.open(_secrets_file(), key_file).rekey(new_key_file)
    click.echo(f"Re-keyed with: {new_key_file}")
