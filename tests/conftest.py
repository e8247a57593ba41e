"""Shared fakes for the OMF client tests."""

from __future__ import annotations

import threading
import time
from typing import Callable, Mapping, Optional

import orjson
import pytest

from omf_device_client.config import ProducerConfig
from omf_device_client.transport import HttpResponse


class FakeHttpClient:
    """Records every POST; status codes come from *status_for* (default 202)."""

    def __init__(
        self,
        status_for: Optional[Callable[[Mapping[str, str], bytes], int]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self.calls: list[tuple[str, dict[str, str], bytes]] = []
        self.events: list[tuple[str, int]] = []
        self.on_post: Optional[Callable[[int], None]] = None
        self._status_for = status_for
        self._delay = delay
        self._error = error
        self._lock = threading.Lock()
        self.closed = False

    def post(self, url: str, headers: Mapping[str, str], body: bytes) -> HttpResponse:
        with self._lock:
            n = len(self.calls)
            self.calls.append((url, dict(headers), body))
            self.events.append(("start", n))
        if self._delay:
            time.sleep(self._delay)
        if self.on_post is not None:
            self.on_post(n)
        with self._lock:
            self.events.append(("end", n))
        if self._error is not None:
            raise self._error
        status = self._status_for(headers, body) if self._status_for else 202
        return HttpResponse(status_code=status)

    def close(self) -> None:
        self.closed = True

    def message_types(self) -> list[str]:
        return [headers["messagetype"] for _, headers, _ in self.calls]

    def bodies(self) -> list:
        return [orjson.loads(body) for _, _, body in self.calls]


@pytest.fixture
def producer_config() -> ProducerConfig:
    return ProducerConfig(
        device_name="Dev1",
        container_id="Dev1_data",
        target_url="https://relay.example.com:8118/ingress/messages",
        producer_token="token-abc123",
        send_interval_seconds=0,
    )


@pytest.fixture
def http_client() -> FakeHttpClient:
    return FakeHttpClient()
