"""Periodic streaming of sensor readings as OMF Data messages.

Each tick::

    run_state off → nothing (readings are not buffered while paused)
    run_state on  → read sensors → timestamp → encode → send (awaited)

Ticks never overlap: the send runs in a worker thread but the loop awaits
it before scheduling the next tick.  A slow send delays later ticks, and
ticks missed meanwhile are dropped rather than replayed.  The loop stops
at the next tick boundary after :meth:`StreamingLoop.request_shutdown`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from omf_device_client.config import ProducerConfig
from omf_device_client.encoder import encode_data_event
from omf_device_client.errors import DataSourceError, TransportError
from omf_device_client.transport import OmfTransport

logger = logging.getLogger(__name__)

DataSource = Callable[[], Mapping[str, Any]]
Clock = Callable[[], str]


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with second precision, e.g. ``2024-01-01T12:00:00Z``."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RunState:
    """Thread-safe "sending enabled" flag shared with the control surface."""

    def __init__(self, enabled: bool = True) -> None:
        self._lock = threading.Lock()
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set(self, enabled: bool) -> None:
        with self._lock:
            self._enabled = enabled

    def toggle(self) -> bool:
        """Flip the flag and return the new value."""
        with self._lock:
            self._enabled = not self._enabled
            return self._enabled


class StreamingLoop:
    """Send one Data message per tick while *run_state* is enabled.

    Parameters
    ----------
    config:
        Producer settings (container id, interval, expected properties).
    transport:
        Where Data messages are sent.
    data_source:
        Zero-argument callable returning ``{property name: value}``.  May
        raise; the tick is then skipped.
    run_state:
        Pause/resume flag, polled once per tick.
    clock:
        Returns the timestamp written into each row.
    max_ticks:
        Stop after this many ticks (paused ticks included).  ``None`` runs
        until shutdown.
    """

    def __init__(
        self,
        config: ProducerConfig,
        transport: OmfTransport,
        data_source: DataSource,
        run_state: RunState,
        clock: Clock = utc_timestamp,
        max_ticks: Optional[int] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._data_source = data_source
        self._run_state = run_state
        self._clock = clock
        self._max_ticks = max_ticks
        self._interval = config.send_interval_seconds
        self._shutdown = asyncio.Event()
        self._ticks = 0
        self._sent = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def sent(self) -> int:
        """Data messages handed to the transport without a transport error."""
        return self._sent

    def request_shutdown(self) -> None:
        """Stop after the current tick; must be called from the loop's thread."""
        self._shutdown.set()

    async def run(self) -> int:
        """Tick until shutdown (or ``max_ticks``) and return the tick count."""
        loop = asyncio.get_running_loop()
        next_at = loop.time()

        logger.info(
            "Streaming to container %s every %.1fs",
            self._config.container_id,
            self._interval,
        )

        while not self._shutdown.is_set():
            await self._tick()
            self._ticks += 1
            if self._max_ticks is not None and self._ticks >= self._max_ticks:
                break

            next_at += self._interval
            delay = next_at - loop.time()
            if delay < 0:
                # fell behind: drop the missed ticks, restart the cadence now
                next_at = loop.time()
                delay = 0.0

            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass  # interval elapsed normally

        logger.info("Streaming stopped after %d ticks (%d sent)", self._ticks, self._sent)
        return self._ticks

    # ── internal ────────────────────────────────────────────────────

    async def _tick(self) -> None:
        if not self._run_state.enabled:
            logger.debug("Sending paused, tick %d skipped", self._ticks + 1)
            return

        try:
            readings = self._read_sensors()
        except DataSourceError as exc:
            logger.error("Sensor read failed: %s", exc)
            return

        try:
            message = encode_data_event(
                self._config.container_id,
                self._clock(),
                readings,
                index_property=self._config.index_property,
            )
        except Exception as exc:
            logger.error("Cannot build data message: %s", exc)
            return

        try:
            await asyncio.to_thread(self._transport.send, message)
        except TransportError as exc:
            logger.error("Data message not delivered: %s", exc)
            return
        self._sent += 1

    def _read_sensors(self) -> Mapping[str, Any]:
        try:
            readings = self._data_source()
        except DataSourceError:
            raise
        except Exception as exc:
            raise DataSourceError(f"data source raised {type(exc).__name__}: {exc}") from exc

        if not isinstance(readings, Mapping):
            raise DataSourceError(
                f"data source returned {type(readings).__name__}, expected a mapping"
            )
        expected = set(self._config.data_properties)
        missing = expected - set(readings)
        unknown = set(readings) - expected
        if missing or unknown:
            raise DataSourceError(
                f"readings do not match the data type "
                f"(missing={sorted(missing)}, unknown={sorted(unknown)})"
            )
        # keep the declared property order on the wire
        return {name: readings[name] for name in self._config.data_properties}
