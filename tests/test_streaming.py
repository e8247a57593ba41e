"""Tests for the streaming module."""

import asyncio
import dataclasses
import logging
import re
import time

import pytest

from conftest import FakeHttpClient
from omf_device_client.config import ProducerConfig
from omf_device_client.sequencer import ProvisioningSequencer
from omf_device_client.streaming import RunState, StreamingLoop, utc_timestamp
from omf_device_client.transport import OmfTransport

TS = "2024-03-01T10:00:00Z"


def _readings() -> dict:
    return {"Raw Sensor Reading 1": 1.5, "Raw Sensor Reading 2": 2.5}


def _loop(
    config: ProducerConfig,
    http: FakeHttpClient,
    data_source=_readings,
    run_state: RunState | None = None,
    max_ticks: int | None = 3,
) -> StreamingLoop:
    return StreamingLoop(
        config,
        OmfTransport(config, http),
        data_source,
        run_state or RunState(),
        clock=lambda: TS,
        max_ticks=max_ticks,
    )


def test_sends_one_data_message_per_tick(
    producer_config: ProducerConfig, http_client: FakeHttpClient
) -> None:
    loop = _loop(producer_config, http_client)
    ticks = asyncio.run(loop.run())

    assert ticks == 3
    assert loop.sent == 3
    assert http_client.message_types() == ["Data", "Data", "Data"]
    for body in http_client.bodies():
        assert body == [{
            "containerid": "Dev1_data",
            "values": [{"Time": TS, "Raw Sensor Reading 1": 1.5, "Raw Sensor Reading 2": 2.5}],
        }]


def test_paused_for_whole_run_sends_nothing(
    producer_config: ProducerConfig, http_client: FakeHttpClient
) -> None:
    """No sends and no sensor reads while sending is disabled."""
    reads = []

    def source() -> dict:
        reads.append(1)
        return _readings()

    loop = _loop(producer_config, http_client, source, RunState(enabled=False), max_ticks=5)
    assert asyncio.run(loop.run()) == 5
    assert http_client.calls == []
    assert reads == []


def test_pause_applies_to_later_ticks_only(producer_config: ProducerConfig) -> None:
    """Pausing during the first send lets that send finish and stops the rest."""
    run_state = RunState(enabled=True)
    http = FakeHttpClient()
    http.on_post = lambda n: run_state.set(False)

    loop = _loop(producer_config, http, run_state=run_state, max_ticks=4)
    assert asyncio.run(loop.run()) == 4
    assert len(http.calls) == 1
    assert loop.sent == 1


def test_sends_never_overlap(producer_config: ProducerConfig) -> None:
    """Each send finishes before the next one starts, even when slow."""
    http = FakeHttpClient(delay=0.02)
    asyncio.run(_loop(producer_config, http, max_ticks=4).run())

    expected = []
    for n in range(4):
        expected += [("start", n), ("end", n)]
    assert http.events == expected


def test_data_source_failure_skips_tick(
    producer_config: ProducerConfig, http_client: FakeHttpClient, caplog: pytest.LogCaptureFixture
) -> None:
    calls = []

    def flaky() -> dict:
        calls.append(1)
        if len(calls) == 2:
            raise OSError("i2c bus timeout")
        return _readings()

    with caplog.at_level(logging.ERROR):
        ticks = asyncio.run(_loop(producer_config, http_client, flaky).run())

    assert ticks == 3
    assert len(http_client.calls) == 2
    assert any("i2c bus timeout" in r.getMessage() for r in caplog.records)


def test_clock_failure_skips_tick(
    producer_config: ProducerConfig, http_client: FakeHttpClient, caplog: pytest.LogCaptureFixture
) -> None:
    """A clock that raises costs one tick, not the loop."""
    calls = []

    def clock() -> str:
        calls.append(1)
        if len(calls) == 1:
            raise OSError("clock unavailable")
        return TS

    loop = StreamingLoop(
        producer_config,
        OmfTransport(producer_config, http_client),
        _readings,
        RunState(),
        clock=clock,
        max_ticks=3,
    )
    with caplog.at_level(logging.ERROR):
        assert asyncio.run(loop.run()) == 3

    assert len(http_client.calls) == 2
    assert loop.sent == 2
    assert any("clock unavailable" in r.getMessage() for r in caplog.records)


def test_ticks_follow_interval(producer_config: ProducerConfig, http_client: FakeHttpClient) -> None:
    """Four ticks at 0.2s take about three intervals."""
    paced = dataclasses.replace(producer_config, send_interval_seconds=0.2)
    loop = _loop(paced, http_client, max_ticks=4)

    started = time.monotonic()
    asyncio.run(loop.run())
    elapsed = time.monotonic() - started

    assert len(http_client.calls) == 4
    assert 0.55 <= elapsed < 1.2


def test_slow_send_drops_missed_ticks(producer_config: ProducerConfig) -> None:
    """A send longer than the interval delays the next tick; missed ticks are not replayed."""
    paced = dataclasses.replace(producer_config, send_interval_seconds=0.05)
    http = FakeHttpClient()
    post_times: list[float] = []

    def on_post(n: int) -> None:
        post_times.append(time.monotonic())
        if n == 0:
            time.sleep(0.3)

    http.on_post = on_post
    asyncio.run(_loop(paced, http, max_ticks=3).run())

    assert len(http.calls) == 3
    # the slow first send spans ~6 intervals; only one tick follows it right away
    first_gap = post_times[1] - post_times[0]
    second_gap = post_times[2] - post_times[1]
    assert first_gap >= 0.3
    assert second_gap >= 0.03


def test_readings_must_match_data_type(
    producer_config: ProducerConfig, http_client: FakeHttpClient, caplog: pytest.LogCaptureFixture
) -> None:
    """Unknown or missing reading names are a data-source error, not a send."""
    with caplog.at_level(logging.ERROR):
        asyncio.run(_loop(producer_config, http_client, lambda: {"Humidity": 3}).run())

    assert http_client.calls == []
    assert any("Humidity" in r.getMessage() for r in caplog.records)


def test_transport_failure_does_not_stop_loop(producer_config: ProducerConfig) -> None:
    http = FakeHttpClient(error=ConnectionRefusedError("refused"))
    loop = _loop(producer_config, http)

    assert asyncio.run(loop.run()) == 3
    assert len(http.calls) == 3
    assert loop.sent == 0


def test_shutdown_stops_at_tick_boundary(producer_config: ProducerConfig) -> None:
    """Shutdown during a tick ends the loop without waiting out the interval."""
    slow = dataclasses.replace(producer_config, send_interval_seconds=3600)
    http = FakeHttpClient()
    holder: dict = {}

    def source() -> dict:
        holder["loop"].request_shutdown()
        return _readings()

    loop = _loop(slow, http, source, max_ticks=None)
    holder["loop"] = loop

    started = time.monotonic()
    assert asyncio.run(loop.run()) == 1
    assert time.monotonic() - started < 5
    assert len(http.calls) == 1


def test_end_to_end_dev1(producer_config: ProducerConfig, http_client: FakeHttpClient) -> None:
    """Provision then stream: 4 startup calls followed by single-row Data calls."""
    transport = OmfTransport(producer_config, http_client)
    ProvisioningSequencer(producer_config, transport).run()
    loop = StreamingLoop(
        producer_config, transport, _readings, RunState(), clock=lambda: TS, max_ticks=2
    )
    asyncio.run(loop.run())

    assert http_client.message_types() == ["Type", "Type", "Container", "Data", "Data", "Data"]
    for body in http_client.bodies()[4:]:
        [event] = body
        [row] = event["values"]
        assert set(row) == {"Time", "Raw Sensor Reading 1", "Raw Sensor Reading 2"}


def test_run_state_toggle() -> None:
    state = RunState(enabled=True)
    assert state.toggle() is False
    assert state.enabled is False
    assert state.toggle() is True


def test_utc_timestamp_format() -> None:
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", utc_timestamp())
