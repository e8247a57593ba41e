"""Error taxonomy for the OMF device client.

Only :class:`ConfigurationError` is fatal (raised at startup, before any
message is sent).  The rest are caught at the component boundary, logged,
and the client carries on.
"""

from __future__ import annotations

from typing import Optional


class OmfClientError(Exception):
    """Base class for all client errors."""


class ConfigurationError(OmfClientError):
    """Missing or malformed configuration."""


class TransportError(OmfClientError):
    """The request could not be constructed or sent at all."""


class ProtocolRejection(OmfClientError):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, message_type: Optional[str] = None) -> None:
        self.status_code = status_code
        self.message_type = message_type
        super().__init__(
            f"{message_type or 'OMF'} message rejected with status {status_code}"
        )


class DataSourceError(OmfClientError):
    """A sensor read failed or returned unusable readings."""
