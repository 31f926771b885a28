"""Cumulative energy counter tracking.

The gateway reports lifetime imported/exported energy per meter. Prometheus
counters must never decrease, so each poll publishes only the non-negative
change since the previous poll. A decrease is treated as a device-side
reset or rounding noise and publishes nothing.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from powerwall_exporter.model import Direction, Meter

# Configure module logger
logger = logging.getLogger(__name__)

# Decreases smaller than this (kWh) are rounding noise and are not logged
NOISE_TOLERANCE_KWH = 0.00001


@dataclass(frozen=True)
class CounterAnomaly:
    """A cumulative reading that went backwards by more than the noise tolerance."""
    meter: Meter
    direction: Direction
    delta: float


class CumulativeCounterState:
    """Last-seen cumulative value per (meter, direction).

    The key space is closed: every Meter x Direction pair is present from
    construction, starting at 0.0, so the first poll publishes the full
    lifetime value.
    """

    def __init__(self):
        self._last: Dict[Tuple[Meter, Direction], float] = {
            (meter, direction): 0.0
            for meter in Meter
            for direction in Direction
        }

    def last(self, meter: Meter, direction: Direction) -> float:
        return self._last[(meter, direction)]

    def snapshot(self) -> Dict[Tuple[Meter, Direction], float]:
        """Return a copy of the table."""
        return dict(self._last)

    def advance(
        self,
        meter: Meter,
        direction: Direction,
        current: float
    ) -> Tuple[float, Optional[CounterAnomaly]]:
        """Record a new cumulative reading.

        The stored value always moves to current, even when the reading went
        backwards, so later deltas are measured from the latest reading.

        Args:
            meter: Meter the reading came from
            direction: Imported or exported energy
            current: Cumulative reading in kWh

        Returns:
            Tuple of (increment to add to the export counter, anomaly if the
            reading decreased by more than NOISE_TOLERANCE_KWH)
        """
        key = (meter, direction)
        delta = current - self._last[key]
        self._last[key] = current

        if delta >= 0:
            return delta, None

        if delta < -NOISE_TOLERANCE_KWH:
            logger.warning(f"Meter {meter} cumulative energy {direction} decreased: {delta:.4f}")
            return 0.0, CounterAnomaly(meter=meter, direction=direction, delta=delta)

        return 0.0, None
