"""Tests for the timer-driven pacing cue."""

from __future__ import annotations

from hpen_app.jnd.pacing import TimedPacingCue


class ManualScheduler:
    """Collects scheduled callbacks so tests can fire them in order."""

    def __init__(self) -> None:
        self.pending: list[tuple[int, object]] = []

    def __call__(self, delay_ms: int, callback) -> None:
        self.pending.append((delay_ms, callback))

    def run_all(self) -> list[int]:
        delays = []
        while self.pending:
            delay, callback = self.pending.pop(0)
            delays.append(delay)
            callback()
        return delays


class TestTimedPacingCue:
    """Tests for TimedPacingCue phases."""

    def test_blink_toggles_then_completes(self) -> None:
        scheduler = ManualScheduler()
        markers: list[tuple[str, object]] = []
        done: list[bool] = []
        cue = TimedPacingCue(blink_interval_ms=100, schedule=scheduler, on_marker=lambda k, v: markers.append((k, v)))

        cue.blink(2, lambda: done.append(True))
        assert done == []
        delays = scheduler.run_all()

        assert delays == [100, 100, 100, 100]
        assert done == [True]
        assert markers == [
            ("visible", False),
            ("visible", True),
            ("visible", False),
            ("visible", True),
            ("visible", True),
        ]

    def test_zero_blinks_completes_immediately(self) -> None:
        scheduler = ManualScheduler()
        done: list[bool] = []
        TimedPacingCue(schedule=scheduler).blink(0, lambda: done.append(True))
        assert done == [True]
        assert scheduler.pending == []

    def test_move_and_return_durations(self) -> None:
        scheduler = ManualScheduler()
        markers: list[tuple[str, object]] = []
        done: list[str] = []
        cue = TimedPacingCue(
            move_duration_ms=3000,
            return_speed_multiplier=2.0,
            schedule=scheduler,
            on_marker=lambda k, v: markers.append((k, v)),
        )

        cue.move_to_end(lambda: done.append("end"))
        cue.reset_to_start(lambda: done.append("start"))
        assert [d for d, _ in scheduler.pending] == [3000, 1500]
        scheduler.run_all()

        assert done == ["end", "start"]
        assert markers == [("position", 1.0), ("position", 0.0)]
