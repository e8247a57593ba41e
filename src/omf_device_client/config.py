"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → encrypted secrets → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.

Config file layout::

    {
      "producer": { ...ProducerConfig fields... },
      "logging":  { "level": "info", "file": {...}, "redact_patterns": [...] }
    }
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import jsonschema
import orjson

from omf_device_client.errors import ConfigurationError

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.schema.json"

DEFAULT_DEVICE_NAME = "OMF Data Source (Python)"
DEFAULT_TARGET_URL = "https://localhost:8118/ingress/messages"
DATA_KINDS = ("number", "string")


def _default_data_properties() -> dict[str, str]:
    return {"Raw Sensor Reading 1": "number", "Raw Sensor Reading 2": "number"}


@dataclass(frozen=True)
class ProducerConfig:
    """Everything the OMF engine needs; built once at startup, never mutated.

    ``type_name_prefix`` and ``container_id`` default to values derived from
    ``device_name`` when left as ``None``.  An explicit empty string is kept
    as-is and rejected by :meth:`validate`.
    """

    device_name: str = DEFAULT_DEVICE_NAME
    device_location: str = "IoT Test Lab"
    device_type: str = "Type74656"
    type_name_prefix: Optional[str] = None
    container_id: Optional[str] = None
    target_url: str = DEFAULT_TARGET_URL
    producer_token: str = "OMFv1"
    cloud_mode: bool = False
    send_interval_seconds: float = 2.0
    verify_tls: bool = False
    request_timeout_seconds: float = 30.0
    index_property: str = "Time"
    data_properties: dict[str, str] = field(default_factory=_default_data_properties)

    def __post_init__(self) -> None:
        if self.type_name_prefix is None:
            object.__setattr__(self, "type_name_prefix", self.device_name)
        if self.container_id is None:
            object.__setattr__(
                self, "container_id", f"{self.device_name}_data_values_container"
            )

    @property
    def assets_type_id(self) -> str:
        return f"{self.type_name_prefix}_assets_type" if self.type_name_prefix else ""

    @property
    def data_values_type_id(self) -> str:
        return f"{self.type_name_prefix}_data_values_type" if self.type_name_prefix else ""

    def validate(self) -> "ProducerConfig":
        """Raise :class:`ConfigurationError` on the first problem found."""
        required = {
            "device_name": self.device_name,
            "target_url": self.target_url,
            "container_id": self.container_id,
            "type_name_prefix": self.type_name_prefix,
            "index_property": self.index_property,
        }
        for name, value in required.items():
            if not value or not str(value).strip():
                raise ConfigurationError(f"producer.{name} must not be empty")

        if not self.data_properties:
            raise ConfigurationError("producer.data_properties must not be empty")
        if self.index_property in self.data_properties:
            raise ConfigurationError(
                f"producer.data_properties must not redefine the index "
                f"property {self.index_property!r}"
            )
        for name, kind in self.data_properties.items():
            if not name:
                raise ConfigurationError("producer.data_properties has an empty name")
            if kind not in DATA_KINDS:
                raise ConfigurationError(
                    f"producer.data_properties[{name!r}] has unsupported kind "
                    f"{kind!r} (expected one of {', '.join(DATA_KINDS)})"
                )

        if self.send_interval_seconds < 0:
            raise ConfigurationError("producer.send_interval_seconds must be >= 0")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError("producer.request_timeout_seconds must be > 0")
        return self


@dataclass
class LogFileConfig:
    """Optional log file output settings.

    When ``enabled`` is True the client writes operational logs to a
    rotating file in addition to stderr.
    """

    enabled: bool = False
    path: str = "/var/log/omf-device-client/client.log"
    max_size_bytes: int = 10485760   # 10 MB
    backup_count: int = 5


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: LogFileConfig = field(default_factory=LogFileConfig)
    redact_patterns: list[str] = field(
        default_factory=lambda: ["*token*", "*key*", "*secret*", "*password*"]
    )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    producer: ProducerConfig = field(default_factory=ProducerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(
    value: str,
    overrides: dict[str, str] | None = None,
    secrets: dict[str, str] | None = None,
) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if secrets and var_name in secrets:
            return secrets[var_name]
        if default is not None:
            return default

        raise ConfigurationError(
            f"Required variable ${{{var_name}}} is not set in environment, "
            f"CLI overrides, or encrypted secrets"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(
    obj: Any,
    overrides: dict[str, str] | None = None,
    secrets: dict[str, str] | None = None,
) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides, secrets)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides, secrets) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides, secrets) for item in obj]
    return obj


def _known_fields(cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    return {k: raw[k] for k in raw if k in cls.__dataclass_fields__}


def _section(raw: dict[str, Any], key: str, where: str) -> dict[str, Any]:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        raise ConfigurationError(
            f"{where}{key} must be an object, got {type(value).__name__}"
        )
    return value


def dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw (already interpolated) dict into a typed :class:`AppConfig`.

    Shapes are checked here as well as by the schema, since schema
    validation is skipped when the schema file is missing.
    """
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config must be a JSON object, got {type(raw).__name__}")
    producer_raw = dict(_section(raw, "producer", ""))
    logging_raw = _section(raw, "logging", "")
    log_file_raw = _section(logging_raw, "file", "logging.")
    _section(producer_raw, "data_properties", "producer.")

    # ``cloud_mode`` etc. may arrive as strings after ${VAR} interpolation
    for key in ("cloud_mode", "verify_tls"):
        if isinstance(producer_raw.get(key), str):
            producer_raw[key] = _parse_bool(key, producer_raw[key])
    for key in ("send_interval_seconds", "request_timeout_seconds"):
        if isinstance(producer_raw.get(key), str):
            producer_raw[key] = _parse_float(key, producer_raw[key])
        value = producer_raw.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"producer.{key} must be a number")

    level = logging_raw.get("level", "info")
    if not isinstance(level, str):
        raise ConfigurationError("logging.level must be a string")
    patterns = logging_raw.get(
        "redact_patterns",
        ["*token*", "*key*", "*secret*", "*password*"],
    )
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        raise ConfigurationError("logging.redact_patterns must be a list of strings")

    return AppConfig(
        producer=ProducerConfig(**_known_fields(ProducerConfig, producer_raw)),
        logging=LoggingConfig(
            level=level,
            file=LogFileConfig(**_known_fields(LogFileConfig, log_file_raw)),
            redact_patterns=patterns,
        ),
    )


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    secrets: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to ``config.json``.
    overrides:
        CLI-supplied variable overrides.
    secrets:
        Values from the encrypted secrets file.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``config/config.schema.json`` relative to the project root.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or parsed, a required ``${VAR}`` cannot
        be resolved, schema validation fails, or the producer settings are
        unusable.
    """
    try:
        raw: Any = orjson.loads(Path(path).read_bytes())
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    except orjson.JSONDecodeError as exc:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {exc}") from exc

    interpolated = _walk_and_interpolate(raw, overrides=overrides, secrets=secrets)

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        try:
            jsonschema.validate(instance=interpolated, schema=schema)
        except jsonschema.ValidationError as exc:
            raise ConfigurationError(f"Config failed schema validation: {exc.message}") from exc
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    cfg = dict_to_config(interpolated)
    cfg.producer.validate()
    return cfg


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ConfigurationError(f"producer.{key}: cannot interpret {value!r} as a boolean")


def _parse_float(key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"producer.{key}: {value!r} is not a number") from exc
