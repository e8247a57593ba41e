"""HTTP transport for OMF messages.

:class:`OmfTransport` POSTs one message per call with the OMF headers and
reports the status code.  It never retries: a non-2xx answer is logged as
a warning and returned to the caller, and only a request that could not be
sent at all raises :class:`~omf_device_client.errors.TransportError`.

The actual HTTP work is done by an :class:`HttpClient`; the default binding
is :class:`RequestsHttpClient`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import requests
import urllib3

from omf_device_client.config import ProducerConfig
from omf_device_client.encoder import encode_body
from omf_device_client.errors import ProtocolRejection, TransportError
from omf_device_client.models import MessageType, OmfMessage

logger = logging.getLogger(__name__)

OMF_VERSION = "1.0"
MESSAGE_FORMAT = "JSON"
DEFAULT_ACTION = "create"


@dataclass(frozen=True)
class HttpResponse:
    status_code: int


class HttpClient(Protocol):
    """Anything that can POST bytes and return a status code.

    Implementations raise on connection-level failures.
    """

    def post(self, url: str, headers: Mapping[str, str], body: bytes) -> HttpResponse:
        ...


class RequestsHttpClient:
    """:class:`HttpClient` backed by a :class:`requests.Session`.

    Parameters
    ----------
    verify_tls:
        Verify the endpoint certificate.  PI Connector Relay installs often
        use self-signed certificates, so this defaults to off.
    timeout_seconds:
        Connect + read timeout for each request.
    """

    def __init__(self, verify_tls: bool = False, timeout_seconds: float = 30.0) -> None:
        self._verify = verify_tls
        self._timeout = timeout_seconds
        self._session = requests.Session()
        if not verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def post(self, url: str, headers: Mapping[str, str], body: bytes) -> HttpResponse:
        resp = self._session.post(
            url,
            headers=dict(headers),
            data=body,
            verify=self._verify,
            timeout=self._timeout,
        )
        return HttpResponse(status_code=resp.status_code)

    def close(self) -> None:
        """Close the underlying connection pool."""
        self._session.close()


@dataclass(frozen=True)
class SendOutcome:
    """Result of one :meth:`OmfTransport.send` call."""

    message_type: MessageType
    status_code: int
    rejection: Optional[ProtocolRejection] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def build_headers(
    producer_token: str, message_type: MessageType, action: str = DEFAULT_ACTION
) -> dict[str, str]:
    """The five mandatory OMF headers, lower-case as the endpoint expects."""
    return {
        "producertoken": producer_token,
        "messagetype": message_type.value,
        "action": action,
        "messageformat": MESSAGE_FORMAT,
        "omfversion": OMF_VERSION,
    }


class OmfTransport:
    """Send :class:`OmfMessage` objects to the configured OMF endpoint."""

    def __init__(self, config: ProducerConfig, http_client: HttpClient) -> None:
        self._url = config.target_url
        self._token = config.producer_token
        self._http = http_client

    def send(self, message: OmfMessage, action: str = DEFAULT_ACTION) -> SendOutcome:
        """POST *message* and return its status.

        Raises
        ------
        TransportError
            If the body cannot be encoded or the HTTP client fails to
            deliver the request (bad URL, refused connection, timeout...).
        """
        headers = build_headers(self._token, message.message_type, action)
        try:
            body = encode_body(message)
        except TypeError as exc:
            raise TransportError(f"Cannot encode {message.message_type.value} message: {exc}") from exc

        logger.debug("Outgoing %s message: %s", message.message_type.value, body.decode("utf-8"))

        try:
            response = self._http.post(self._url, headers, body)
        except Exception as exc:
            raise TransportError(
                f"{message.message_type.value} request to {self._url} failed: {exc}"
            ) from exc

        outcome = SendOutcome(message_type=message.message_type, status_code=response.status_code)
        if outcome.ok:
            logger.info("%s message accepted (status %d)", message.message_type.value, outcome.status_code)
            return outcome

        rejection = ProtocolRejection(outcome.status_code, message.message_type.value)
        logger.warning("%s", rejection)
        return SendOutcome(
            message_type=message.message_type,
            status_code=response.status_code,
            rejection=rejection,
        )
