"""Fixed-step up/down staircase for bench runs.

The trial machine accepts any `StaircaseEstimator`; this one walks a grid of
`number_of_steps` offsets between the configured min and max, one level down
after a detected difference and one level up after a miss, and averages the
offsets at the last reversals.
"""

from __future__ import annotations

import logging
from typing import Optional

from hpen_app.jnd.trial_spec import TrialSpec

logger = logging.getLogger(__name__)


class FixedStepStaircase:
    """Single-sequence staircase driven by `StaircaseConfig` step settings."""

    def __init__(self) -> None:
        self._spec: Optional[TrialSpec] = None
        self._levels: list[float] = []
        self._index = 0
        self._direction = 0
        self._quick_steps: tuple[int, int, int] = (1, 1, 0)
        self._reversals: list[float] = []
        self._trials = 0
        self.condition_name = ""
        self.participant = 1

    def init(self, spec: TrialSpec, *, condition_name: str, participant: int) -> None:
        sc = spec.staircase
        count = max(2, int(sc.number_of_steps))
        span = spec.max_value - spec.min_value
        self._spec = spec
        self._levels = [spec.min_value + span * i / (count - 1) for i in range(count)]
        if sc.single_sequence and sc.single_sequence_up:
            start = sc.start_step_sequ1
            self._quick_steps = (
                sc.steps_up_start_early,
                sc.steps_down_start_early,
                sc.quick_start_early_until_reversals,
            )
        else:
            start = sc.start_step_sequ2
            self._quick_steps = (
                sc.steps_up_start_late,
                sc.steps_down_start_late,
                sc.quick_start_late_until_reversals,
            )
        self._index = self._clamp(int(start))
        self._direction = 0
        self._reversals = []
        self._trials = 0
        self.condition_name = condition_name
        self.participant = int(participant)
        logger.info(
            "Staircase %s initialized: %d levels from %s to %s, starting at level %d",
            condition_name,
            count,
            spec.min_value,
            spec.max_value,
            self._index,
        )

    def _clamp(self, index: int) -> int:
        return max(0, min(len(self._levels) - 1, index))

    def _steps(self) -> tuple[int, int]:
        up, down, until = self._quick_steps
        if len(self._reversals) < until:
            return up, down
        sc = self._spec.staircase
        return sc.steps_up, sc.steps_down

    @property
    def reversals(self) -> list[float]:
        return list(self._reversals)

    @property
    def trials(self) -> int:
        return self._trials

    def next_stimulus(self) -> float:
        return self._levels[self._index]

    def trial_finished(self, detected: bool) -> None:
        if self._spec is None:
            raise RuntimeError("Staircase used before init()")
        self._trials += 1
        up, down = self._steps()
        direction = -1 if detected else 1
        if self._direction and direction != self._direction:
            self._reversals.append(self._levels[self._index])
            logger.debug("Reversal %d at %s", len(self._reversals), self._levels[self._index])
        self._direction = direction
        self._index = self._clamp(self._index - down if detected else self._index + up)

    def is_finished(self) -> bool:
        if self._spec is None:
            return False
        stop = self._spec.stop
        if stop.stop_criterion_reversals:
            return len(self._reversals) >= stop.stop_amount
        return self._trials >= stop.stop_amount

    def threshold(self) -> float:
        points = max(1, self._spec.stop.number_threshold_points) if self._spec else 1
        values = self._reversals[-points:]
        if not values:
            return self.next_stimulus() if self._levels else 0.0
        return sum(values) / len(values)
