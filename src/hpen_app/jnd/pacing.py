"""Pacing cue that standardises the exploration window of a presentation.

The cue blinks a marker, moves it to an end marker and brings it back. Each
phase reports completion through a callback. `TimedPacingCue` schedules the
phases on the Qt event loop, which is the thread running the control loop,
so completions never arrive from the serial reader thread.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from PySide6.QtCore import QTimer

Callback = Callable[[], None]
Scheduler = Callable[[int, Callback], None]

_DEFAULT_BLINK_INTERVAL_MS = 250
_DEFAULT_MOVE_DURATION_MS = 3000
_DEFAULT_RETURN_SPEED_MULTIPLIER = 2.0


class PacingCue(Protocol):
    def blink(self, times: int, on_complete: Callback) -> None: ...

    def move_to_end(self, on_complete: Callback) -> None: ...

    def reset_to_start(self, on_complete: Callback) -> None: ...


def _qt_single_shot(delay_ms: int, callback: Callback) -> None:
    QTimer.singleShot(max(0, int(delay_ms)), callback)


class TimedPacingCue:
    """Pacing cue driven purely by timers.

    `on_marker` is notified with ("visible", bool) while blinking and with
    ("position", 0.0..1.0) when the marker reaches either end, so a display
    can mirror the cue.
    """

    def __init__(
        self,
        *,
        blink_interval_ms: int = _DEFAULT_BLINK_INTERVAL_MS,
        move_duration_ms: int = _DEFAULT_MOVE_DURATION_MS,
        return_speed_multiplier: float = _DEFAULT_RETURN_SPEED_MULTIPLIER,
        schedule: Scheduler = _qt_single_shot,
        on_marker: Callable[[str, object], None] | None = None,
    ) -> None:
        self.blink_interval_ms = int(blink_interval_ms)
        self.move_duration_ms = int(move_duration_ms)
        self.return_speed_multiplier = max(0.1, float(return_speed_multiplier))
        self._schedule = schedule
        self._on_marker = on_marker

    def _notify(self, kind: str, value: object) -> None:
        if self._on_marker is not None:
            self._on_marker(kind, value)

    def blink(self, times: int, on_complete: Callback) -> None:
        remaining = max(0, int(times)) * 2

        def step(visible: bool) -> None:
            nonlocal remaining
            if remaining <= 0:
                self._notify("visible", True)
                on_complete()
                return
            remaining -= 1
            self._notify("visible", visible)
            self._schedule(self.blink_interval_ms, lambda: step(not visible))

        step(False)

    def move_to_end(self, on_complete: Callback) -> None:
        def arrived() -> None:
            self._notify("position", 1.0)
            on_complete()

        self._schedule(self.move_duration_ms, arrived)

    def reset_to_start(self, on_complete: Callback) -> None:
        def arrived() -> None:
            self._notify("position", 0.0)
            on_complete()

        self._schedule(int(self.move_duration_ms / self.return_speed_multiplier), arrived)
