"""Default data source: random readings, as in the OMF sample scripts.

Replace with a callable that reads real hardware (GPIO pins, an I2C sensor,
...).  Any zero-argument callable returning ``{property name: value}`` for
the configured data properties will do.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

STRING_PLACEHOLDER = "OK"


class RandomSensorSource:
    """Uniform random numbers in ``[0, 100)``; ``"OK"`` for string properties."""

    def __init__(self, data_properties: Mapping[str, str], seed: Optional[int] = None) -> None:
        self._properties = dict(data_properties)
        self._rng = random.Random(seed)

    def initialize(self) -> None:
        """Hook for hardware setup before the first read."""
        logger.info("Sensors initializing (%d properties)", len(self._properties))
        logger.info("Sensors initialized")

    def __call__(self) -> dict[str, Any]:
        return self.read()

    def read(self) -> dict[str, Any]:
        return {
            name: 100 * self._rng.random() if kind == "number" else STRING_PLACEHOLDER
            for name, kind in self._properties.items()
        }
