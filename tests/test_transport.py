"""Tests for the transport module."""

import logging
from unittest.mock import MagicMock, patch

import orjson
import pytest
import requests

from conftest import FakeHttpClient
from omf_device_client.config import ProducerConfig
from omf_device_client.encoder import encode_container, encode_data_event
from omf_device_client.errors import ProtocolRejection, TransportError
from omf_device_client.models import MessageType
from omf_device_client.transport import OmfTransport, RequestsHttpClient, build_headers


def test_headers_are_exact() -> None:
    assert build_headers("tok", MessageType.CONTAINER) == {
        "producertoken": "tok",
        "messagetype": "Container",
        "action": "create",
        "messageformat": "JSON",
        "omfversion": "1.0",
    }


def test_send_posts_body_and_headers(
    producer_config: ProducerConfig, http_client: FakeHttpClient
) -> None:
    transport = OmfTransport(producer_config, http_client)
    outcome = transport.send(encode_container(producer_config))

    assert outcome.ok
    assert outcome.status_code == 202
    assert outcome.rejection is None

    [(url, headers, body)] = http_client.calls
    assert url == producer_config.target_url
    assert headers["messagetype"] == "Container"
    assert headers["producertoken"] == "token-abc123"
    assert orjson.loads(body) == [{"id": "Dev1_data", "typeid": "Dev1_data_values_type"}]


def test_non_2xx_is_logged_not_raised(
    producer_config: ProducerConfig, caplog: pytest.LogCaptureFixture
) -> None:
    """A 500 comes back as an outcome with a rejection and a warning."""
    transport = OmfTransport(producer_config, FakeHttpClient(status_for=lambda h, b: 500))
    with caplog.at_level(logging.WARNING):
        outcome = transport.send(encode_data_event("Dev1_data", "2024-01-01T00:00:00Z", {"a": 1}))

    assert not outcome.ok
    assert isinstance(outcome.rejection, ProtocolRejection)
    assert outcome.rejection.status_code == 500
    assert any("500" in r.getMessage() and r.levelno == logging.WARNING for r in caplog.records)


def test_client_failure_becomes_transport_error(producer_config: ProducerConfig) -> None:
    transport = OmfTransport(
        producer_config, FakeHttpClient(error=ConnectionRefusedError("refused"))
    )
    with pytest.raises(TransportError, match="refused"):
        transport.send(encode_container(producer_config))


class TestRequestsHttpClient:
    """Tests for :class:`RequestsHttpClient`."""

    def test_post_passes_tls_and_timeout(self) -> None:
        with patch("omf_device_client.transport.requests.Session") as session_cls:
            session = session_cls.return_value
            session.post.return_value = MagicMock(status_code=204)

            client = RequestsHttpClient(verify_tls=True, timeout_seconds=5)
            response = client.post("https://h/omf", {"messagetype": "Data"}, b"[]")

            assert response.status_code == 204
            session.post.assert_called_once_with(
                "https://h/omf",
                headers={"messagetype": "Data"},
                data=b"[]",
                verify=True,
                timeout=5,
            )

    def test_connection_error_propagates_as_transport_error(
        self, producer_config: ProducerConfig
    ) -> None:
        with patch("omf_device_client.transport.requests.Session") as session_cls:
            session_cls.return_value.post.side_effect = requests.ConnectionError("no route")
            transport = OmfTransport(producer_config, RequestsHttpClient())
            with pytest.raises(TransportError):
                transport.send(encode_container(producer_config))

    def test_close_closes_session(self) -> None:
        with patch("omf_device_client.transport.requests.Session") as session_cls:
            RequestsHttpClient().close()
            session_cls.return_value.close.assert_called_once()
