"""Keep the producer token (and similar credentials) out of log output."""

from __future__ import annotations

import dataclasses
import fnmatch
import logging
from typing import Iterable

from omf_device_client.config import ProducerConfig

REDACTED = "[REDACTED]"


class SecretRedactingFilter(logging.Filter):
    """Render each record once, then mask every known secret in the text."""

    def __init__(self, secret_values: Iterable[str] | None = None) -> None:
        super().__init__()
        # longest first so a token containing another is masked whole;
        # one-character values would shred every message
        self._secrets = sorted({s for s in secret_values or () if len(s) > 1}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        text = record.getMessage()
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        record.msg, record.args = text, ()
        return True


def producer_secrets(producer: ProducerConfig, patterns: Iterable[str] = ()) -> list[str]:
    """The producer token plus any producer string setting whose name matches *patterns*."""
    found = [producer.producer_token] if producer.producer_token else []
    lowered = [p.lower() for p in patterns]
    for name, value in dataclasses.asdict(producer).items():
        if isinstance(value, str) and value and any(fnmatch.fnmatch(name, p) for p in lowered):
            found.append(value)
    return found
