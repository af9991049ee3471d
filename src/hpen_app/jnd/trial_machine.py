"""Two-alternative forced choice (2AFC) trial sequencing.

The state machine presents a reference and a test stimulus in random order,
paces the exploration of each presentation, then waits for a binary
"difference detected" judgment. Judgments are remapped before they reach the
adaptive estimator so the estimator always moves the offset toward zero.

Outer states of one trial::

    SHOWING_FIRST -> [PACING_ANIMATION] -> DELAY_BETWEEN -> SHOWING_SECOND
        -> [PACING_ANIMATION] -> WAITING_FOR_RESPONSE

PACING_ANIMATION has its own phases (blink, move to end, hold, return). Each
phase completes through a callback tagged with the trial epoch; callbacks
from an abandoned trial do nothing.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from hpen_app.jnd.pacing import PacingCue
from hpen_app.jnd.response import TrialRecord, new_trial, presentation_order, staircase_response
from hpen_app.jnd.trial_spec import TrialSpec

logger = logging.getLogger(__name__)

FLAT_SURFACE = 0.0


# ============================================================================
# Collaborator contracts
# ============================================================================


class StaircaseEstimator(Protocol):
    """Adaptive staircase procedure owning the stimulus offset."""

    def init(self, spec: TrialSpec, *, condition_name: str, participant: int) -> None: ...

    def next_stimulus(self) -> float: ...

    def trial_finished(self, detected: bool) -> None: ...

    def is_finished(self) -> bool: ...

    def threshold(self) -> float: ...


class SurfaceController(Protocol):
    def set_height(self, value: float) -> None: ...


# ============================================================================
# State
# ============================================================================


class TrialState(Enum):
    IDLE = "idle"
    SHOWING_FIRST = "showing_first"
    PACING_ANIMATION = "pacing_animation"
    DELAY_BETWEEN = "delay_between"
    SHOWING_SECOND = "showing_second"
    WAITING_FOR_RESPONSE = "waiting_for_response"


class PacingPhase(Enum):
    NONE = "none"
    BLINKING = "blinking"
    MOVING_TO_END = "moving_to_end"
    HOLDING_AT_END = "holding_at_end"
    RETURNING = "returning"
    FALLBACK_DELAY = "fallback_delay"


_FAST_MODE_ACCEPT = frozenset(
    {
        TrialState.SHOWING_FIRST,
        TrialState.DELAY_BETWEEN,
        TrialState.SHOWING_SECOND,
        TrialState.WAITING_FOR_RESPONSE,
    }
)


@dataclass(frozen=True, slots=True)
class TrialTiming:
    """Timing and mode switches of the trial sequence (seconds)."""

    fast_mode: bool = False
    blink_count: int = 3
    wait_at_end_s: float = 0.5
    delay_between_s: float = 1.0
    stimulus_duration_s: float = 2.0
    pacing_fallback_s: float = 1.0
    delay_between_tests_s: float = 2.0
    randomize_order: bool = True


@dataclass(frozen=True, slots=True)
class ThresholdResult:
    """Threshold found for one configuration."""

    config_index: int
    name: str
    threshold: float
    trials: int


# ============================================================================
# State machine
# ============================================================================


class TrialStateMachine:
    """Runs the configured staircase tests one after another."""

    def __init__(
        self,
        specs: Sequence[TrialSpec],
        estimator: StaircaseEstimator,
        surface: SurfaceController,
        *,
        pacing: PacingCue | None = None,
        timing: TrialTiming = TrialTiming(),
        participant: int = 1,
        rng: Optional[random.Random] = None,
        on_state_changed: Callable[[TrialState, TrialState], None] | None = None,
    ) -> None:
        self._specs = list(specs)
        self._estimator = estimator
        self._surface = surface
        self._pacing = pacing
        self.timing = timing
        self.participant = int(participant)
        self._rng = rng
        self._on_state_changed = on_state_changed

        self._state = TrialState.IDLE
        self._pacing_phase = PacingPhase.NONE
        self._state_timer = 0.0
        self._epoch = 0
        self._running = False
        self._waiting_for_next_test = False
        self._order: list[int] = []
        self._position = 0
        self._record: Optional[TrialRecord] = None
        self._presenting_second = False
        self._trials_in_test = 0
        self._results: list[ThresholdResult] = []

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> TrialState:
        return self._state

    @property
    def pacing_phase(self) -> PacingPhase:
        return self._pacing_phase

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def waiting_for_next_test(self) -> bool:
        return self._waiting_for_next_test

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def order(self) -> list[int]:
        return list(self._order)

    @property
    def position(self) -> int:
        """Zero-based position within the session order."""
        return self._position

    @property
    def total(self) -> int:
        return len(self._specs)

    @property
    def current_index(self) -> Optional[int]:
        """Configuration index of the running test, or None."""
        if self._running and 0 <= self._position < len(self._order):
            return self._order[self._position]
        return None

    @property
    def current_spec(self) -> Optional[TrialSpec]:
        index = self.current_index
        return self._specs[index] if index is not None else None

    @property
    def record(self) -> Optional[TrialRecord]:
        return self._record

    @property
    def results(self) -> list[ThresholdResult]:
        return list(self._results)

    @property
    def accepts_response(self) -> bool:
        if not self._running or self._record is None:
            return False
        if self.timing.fast_mode:
            return self._state in _FAST_MODE_ACCEPT
        return self._state is TrialState.WAITING_FOR_RESPONSE

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    def add_spec(self, spec: TrialSpec) -> None:
        self._specs.append(spec)

    def start(self) -> bool:
        """Start the test sequence. Returns False when nothing was started."""
        if self._running:
            logger.warning("Test sequence already running")
            return False
        if not self._specs:
            logger.error("No test configurations found")
            return False

        self._order = presentation_order(len(self._specs), self.timing.randomize_order, self._rng)
        if self.timing.randomize_order:
            logger.info("Starting randomized test sequence with %d tests, order %s", len(self._order), self._order)
        else:
            logger.info("Starting sequential test sequence with %d tests", len(self._order))
        self._position = 0
        self._results = []
        self._running = True
        self._waiting_for_next_test = False
        self._begin_test()
        return True

    def stop(self) -> None:
        """Abandon the sequence; pending pacing callbacks become no-ops."""
        if not self._running:
            return
        logger.info("Test sequence stopped")
        self._epoch += 1
        self._running = False
        self._waiting_for_next_test = False
        self._record = None
        self._order = []
        self._position = 0
        self._enter(TrialState.IDLE)
        self._surface.set_height(FLAT_SURFACE)

    def start_next_test(self) -> bool:
        if not self._waiting_for_next_test:
            return False
        self._waiting_for_next_test = False
        self._begin_test()
        return True

    def _begin_test(self) -> None:
        index = self.current_index
        if index is None:
            self._complete_all()
            return
        spec = self._specs[index]
        logger.info(
            "Initializing test %d/%d: %s (configuration index %d)",
            self._position + 1,
            len(self._order),
            spec.name,
            index,
        )
        self._estimator.init(spec, condition_name=spec.condition_label(index), participant=self.participant)
        self._trials_in_test = 0
        if self._estimator.is_finished():
            logger.info("Staircase for '%s' finished before its first trial", spec.name)
            self._finish_test()
            return
        self._start_trial(self._estimator.next_stimulus())

    def _finish_test(self) -> None:
        index = self.current_index
        spec = self._specs[index]
        threshold = self._estimator.threshold()
        self._results.append(
            ThresholdResult(config_index=index, name=spec.name, threshold=threshold, trials=self._trials_in_test)
        )
        logger.info("Test '%s' completed. Threshold: %s", spec.name, threshold)

        self._record = None
        self._surface.set_height(FLAT_SURFACE)
        self._position += 1
        if self._position >= len(self._order):
            self._complete_all()
            return
        if self.timing.delay_between_tests_s > 0:
            self._epoch += 1
            self._waiting_for_next_test = True
            self._enter(TrialState.IDLE)
        else:
            self._begin_test()

    def _complete_all(self) -> None:
        self._epoch += 1
        self._running = False
        self._waiting_for_next_test = False
        self._record = None
        self._enter(TrialState.IDLE)
        self._surface.set_height(FLAT_SURFACE)
        logger.info("All tests completed (%d results)", len(self._results))

    # -------------------------------------------------------------------------
    # Trials
    # -------------------------------------------------------------------------

    def _start_trial(self, offset: float) -> None:
        spec = self.current_spec
        self._epoch += 1
        self._record = new_trial(offset, spec.reference_stimulus, self._rng)
        self._presenting_second = False
        self._enter(TrialState.SHOWING_FIRST)
        self._surface.set_height(self._record.first_stimulus)
        logger.info(
            "Starting 2AFC trial - offset: %s, test: %s, reference: %s, reference first: %s",
            offset,
            self._record.test_stimulus,
            self._record.reference_stimulus,
            self._record.reference_first,
        )

    def respond(self, detected: bool) -> bool:
        """Feed a participant judgment. Returns True when it was used."""
        if not self.accepts_response:
            logger.debug("Ignoring response in state %s", self._state.name)
            return False
        if self._estimator.is_finished():
            logger.info("Current staircase is already finished")
            self._finish_test()
            return False

        record = self._record
        reported = staircase_response(detected, record.offset)
        logger.info(
            "User response: difference %s; offset %s; reported to staircase as %s",
            "DETECTED" if detected else "NOT DETECTED",
            record.offset,
            "DETECTED" if reported else "NOT DETECTED",
        )
        self._estimator.trial_finished(reported)
        self._trials_in_test += 1
        self._record = None

        if self._estimator.is_finished():
            self._finish_test()
        else:
            self._start_trial(self._estimator.next_stimulus())
        return True

    # -------------------------------------------------------------------------
    # Per-tick progression
    # -------------------------------------------------------------------------

    def _enter(self, state: TrialState) -> None:
        previous = self._state
        self._state = state
        self._state_timer = 0.0
        if state is not TrialState.PACING_ANIMATION:
            self._pacing_phase = PacingPhase.NONE
        if previous is not state:
            logger.debug("Trial state %s -> %s", previous.name, state.name)
            if self._on_state_changed is not None:
                self._on_state_changed(previous, state)

    def tick(self, dt: float) -> None:
        """Advance timers by `dt` seconds; call once per control-loop frame."""
        if not self._running:
            return
        self._state_timer += max(0.0, dt)

        if self._waiting_for_next_test:
            if self._state_timer >= self.timing.delay_between_tests_s:
                self.start_next_test()
            return

        # The estimator may finish on its own, without a fresh response.
        if self._estimator.is_finished():
            self._finish_test()
            return

        state = self._state
        if state in (TrialState.SHOWING_FIRST, TrialState.SHOWING_SECOND):
            if not self.timing.fast_mode:
                self._begin_pacing()
            elif self._state_timer >= self.timing.stimulus_duration_s:
                self._surface.set_height(FLAT_SURFACE)
                self._after_presentation()
        elif state is TrialState.PACING_ANIMATION:
            self._tick_pacing()
        elif state is TrialState.DELAY_BETWEEN:
            if self._state_timer >= self.timing.delay_between_s:
                self._presenting_second = True
                self._enter(TrialState.SHOWING_SECOND)
                self._surface.set_height(self._record.second_stimulus)

    def _after_presentation(self) -> None:
        if self._presenting_second:
            self._enter(TrialState.WAITING_FOR_RESPONSE)
        else:
            self._enter(TrialState.DELAY_BETWEEN)

    # -------------------------------------------------------------------------
    # Pacing sub-sequence
    # -------------------------------------------------------------------------

    def _guard(self, phase: PacingPhase, action: Callable[[], None]) -> Callable[[], None]:
        epoch = self._epoch

        def on_complete() -> None:
            if epoch != self._epoch or self._pacing_phase is not phase:
                logger.debug("Dropping stale pacing completion for %s", phase.name)
                return
            action()

        return on_complete

    def _set_phase(self, phase: PacingPhase) -> None:
        self._pacing_phase = phase
        self._state_timer = 0.0

    def _begin_pacing(self) -> None:
        self._enter(TrialState.PACING_ANIMATION)
        if self._pacing is None:
            self._set_phase(PacingPhase.FALLBACK_DELAY)
            return
        self._set_phase(PacingPhase.BLINKING)
        self._pacing.blink(self.timing.blink_count, self._guard(PacingPhase.BLINKING, self._on_blinked))

    def _on_blinked(self) -> None:
        self._set_phase(PacingPhase.MOVING_TO_END)
        self._pacing.move_to_end(self._guard(PacingPhase.MOVING_TO_END, self._on_reached_end))

    def _on_reached_end(self) -> None:
        self._surface.set_height(FLAT_SURFACE)
        self._set_phase(PacingPhase.HOLDING_AT_END)

    def _on_returned(self) -> None:
        self._surface.set_height(FLAT_SURFACE)
        self._after_presentation()

    def _tick_pacing(self) -> None:
        phase = self._pacing_phase
        if phase is PacingPhase.HOLDING_AT_END:
            if self._state_timer >= self.timing.wait_at_end_s:
                self._set_phase(PacingPhase.RETURNING)
                self._pacing.reset_to_start(self._guard(PacingPhase.RETURNING, self._on_returned))
        elif phase is PacingPhase.FALLBACK_DELAY:
            if self._state_timer >= self.timing.pacing_fallback_s:
                self._surface.set_height(FLAT_SURFACE)
                self._after_presentation()

    # -------------------------------------------------------------------------
    # Display
    # -------------------------------------------------------------------------

    def status_text(self) -> str:
        if not self._running:
            return "Idle"
        if self._waiting_for_next_test:
            return "Waiting for next test"
        if self.accepts_response:
            if self._state is TrialState.WAITING_FOR_RESPONSE:
                return "Do you feel the difference? Answer yes or no"
            return f"{_STATE_TEXT[self._state]} (answer anytime)"
        if self._state is TrialState.PACING_ANIMATION:
            return _PHASE_TEXT[self._pacing_phase]
        return _STATE_TEXT[self._state]


_STATE_TEXT = {
    TrialState.IDLE: "Idle",
    TrialState.SHOWING_FIRST: "Presenting first stimulus...",
    TrialState.PACING_ANIMATION: "Pacing...",
    TrialState.DELAY_BETWEEN: "Preparing second stimulus...",
    TrialState.SHOWING_SECOND: "Presenting second stimulus...",
    TrialState.WAITING_FOR_RESPONSE: "Waiting for response",
}

_PHASE_TEXT = {
    PacingPhase.NONE: "Pacing...",
    PacingPhase.BLINKING: "Pacing dot blinking...",
    PacingPhase.MOVING_TO_END: "Pacing dot moving to end...",
    PacingPhase.HOLDING_AT_END: "Waiting at end position...",
    PacingPhase.RETURNING: "Pacing dot returning to start...",
    PacingPhase.FALLBACK_DELAY: "Exploring stimulus...",
}
