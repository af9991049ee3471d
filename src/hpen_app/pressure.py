from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class PressureState(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def classify(pressure: float, threshold_low: float, threshold_high: float) -> PressureState:
    """Map a pressure reading onto the three pressure bands.

    Both thresholds belong to the MEDIUM band.
    """
    if pressure < threshold_low:
        return PressureState.LOW
    if pressure <= threshold_high:
        return PressureState.MEDIUM
    return PressureState.HIGH


class PressureStateMachine:
    """Tracks the current pressure band for the pen.

    Only the latest classification is kept; the previous one is used for
    transition logging.
    """

    def __init__(self, threshold_low: float, threshold_high: float) -> None:
        if threshold_low >= threshold_high:
            raise ValueError("threshold_low must be below threshold_high")
        self._threshold_low = float(threshold_low)
        self._threshold_high = float(threshold_high)
        self._state = PressureState.LOW

    @property
    def state(self) -> PressureState:
        return self._state

    @property
    def thresholds(self) -> tuple[float, float]:
        return (self._threshold_low, self._threshold_high)

    def update(self, pressure: float) -> PressureState:
        previous = self._state
        self._state = classify(pressure, self._threshold_low, self._threshold_high)
        if self._state is not previous:
            logger.info(
                "Pressure state changed from %s to %s (pressure: %.1f)",
                previous.name,
                self._state.name,
                pressure,
            )
        return self._state

    def reset(self) -> None:
        self._state = PressureState.LOW
