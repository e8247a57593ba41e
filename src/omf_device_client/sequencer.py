"""One-time OMF provisioning.

Strictly ordered, never goes back::

    START → DYNAMIC_TYPE_SENT → [STATIC_TYPE_SENT] → CONTAINER_SENT
          → [ASSETS_LINKS_SENT] → PROVISIONED

Bracketed steps are skipped in cloud mode.  Provisioning is best-effort:
every step is attempted even when an earlier one failed or was rejected,
and ``PROVISIONED`` is always reached.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable

from omf_device_client.config import ProducerConfig
from omf_device_client.encoder import (
    encode_assets_and_links,
    encode_container,
    encode_dynamic_type,
    encode_static_type,
)
from omf_device_client.errors import TransportError
from omf_device_client.models import OmfMessage
from omf_device_client.transport import OmfTransport

logger = logging.getLogger(__name__)


class ProvisioningState(enum.Enum):
    """States in the provisioning sequence."""

    START = "START"
    DYNAMIC_TYPE_SENT = "DYNAMIC_TYPE_SENT"
    STATIC_TYPE_SENT = "STATIC_TYPE_SENT"
    CONTAINER_SENT = "CONTAINER_SENT"
    ASSETS_LINKS_SENT = "ASSETS_LINKS_SENT"
    PROVISIONED = "PROVISIONED"


class ProvisioningSequencer:
    """Drive the startup message sequence through an :class:`OmfTransport`.

    Parameters
    ----------
    config:
        Producer settings; ``cloud_mode`` decides which steps run.
    transport:
        Where messages are sent.
    """

    def __init__(self, config: ProducerConfig, transport: OmfTransport) -> None:
        self._config = config
        self._transport = transport
        self._state = ProvisioningState.START
        self._history: list[ProvisioningState] = []

    @property
    def state(self) -> ProvisioningState:
        return self._state

    @property
    def history(self) -> list[ProvisioningState]:
        """States entered so far, excluding ``START``."""
        return list(self._history)

    def steps(self) -> list[tuple[ProvisioningState, Callable[[ProducerConfig], OmfMessage]]]:
        """The (state reached, encoder) pairs applicable to this config."""
        plan = [(ProvisioningState.DYNAMIC_TYPE_SENT, encode_dynamic_type)]
        if not self._config.cloud_mode:
            plan.append((ProvisioningState.STATIC_TYPE_SENT, encode_static_type))
        plan.append((ProvisioningState.CONTAINER_SENT, encode_container))
        if not self._config.cloud_mode:
            plan.append((ProvisioningState.ASSETS_LINKS_SENT, encode_assets_and_links))
        return plan

    def run(self) -> list[ProvisioningState]:
        """Send every applicable step in order and return the states visited.

        Raises
        ------
        RuntimeError
            If called more than once.
        ConfigurationError
            If the config cannot be encoded; nothing is sent in that case
            for the failing step or after it.
        """
        if self._state is not ProvisioningState.START:
            raise RuntimeError(f"Provisioning already ran (state={self._state.value})")

        logger.info(
            "Provisioning %s (cloud_mode=%s): sending types, containers%s",
            self._config.target_url,
            self._config.cloud_mode,
            "" if self._config.cloud_mode else ", assets and links",
        )

        for next_state, encode in self.steps():
            self._send_step(next_state, encode(self._config))
            self._set_state(next_state)

        self._set_state(ProvisioningState.PROVISIONED)
        return self.history

    # ── helpers ─────────────────────────────────────────────────────

    def _send_step(self, step: ProvisioningState, message: OmfMessage) -> None:
        try:
            outcome = self._transport.send(message)
        except TransportError as exc:
            logger.error("Step %s: message not delivered: %s", step.value, exc)
            return
        if outcome.ok:
            logger.info("Step %s: status %d (success)", step.value, outcome.status_code)
        else:
            logger.warning(
                "Step %s: status %d (not a success), continuing", step.value, outcome.status_code
            )

    def _set_state(self, new: ProvisioningState) -> None:
        old = self._state
        self._state = new
        self._history.append(new)
        logger.info("Provisioning state: %s → %s", old.value, new.value)
