"""Tests for the pressure module."""

from __future__ import annotations

import pytest

from hpen_app.pressure import PressureState, PressureStateMachine, classify


class TestClassify:
    """Tests for the three-band pressure classification."""

    @pytest.mark.parametrize(
        ("pressure", "expected"),
        [
            (0.0, PressureState.LOW),
            (9.99, PressureState.LOW),
            (10.0, PressureState.MEDIUM),
            (20.0, PressureState.MEDIUM),
            (30.0, PressureState.MEDIUM),
            (30.01, PressureState.HIGH),
            (500.0, PressureState.HIGH),
            (-5.0, PressureState.LOW),
        ],
    )
    def test_bands(self, pressure: float, expected: PressureState) -> None:
        """Both thresholds belong to the MEDIUM band."""
        assert classify(pressure, 10.0, 30.0) is expected


class TestPressureStateMachine:
    """Tests for PressureStateMachine."""

    def test_starts_low(self) -> None:
        assert PressureStateMachine(10.0, 30.0).state is PressureState.LOW

    def test_rejects_inverted_thresholds(self) -> None:
        """threshold_low must be strictly below threshold_high."""
        with pytest.raises(ValueError):
            PressureStateMachine(30.0, 10.0)
        with pytest.raises(ValueError):
            PressureStateMachine(10.0, 10.0)

    def test_update_tracks_latest_reading(self) -> None:
        machine = PressureStateMachine(10.0, 30.0)
        assert machine.update(40.0) is PressureState.HIGH
        assert machine.update(15.0) is PressureState.MEDIUM
        assert machine.update(1.0) is PressureState.LOW
        assert machine.state is PressureState.LOW

    def test_logs_transitions_only(self, caplog) -> None:
        """Repeated readings in the same band should not log again."""
        machine = PressureStateMachine(10.0, 30.0)
        with caplog.at_level("INFO", logger="hpen_app.pressure"):
            machine.update(40.0)
            machine.update(45.0)
        assert caplog.text.count("Pressure state changed") == 1

    def test_reset(self) -> None:
        machine = PressureStateMachine(10.0, 30.0)
        machine.update(40.0)
        machine.reset()
        assert machine.state is PressureState.LOW
        assert machine.thresholds == (10.0, 30.0)
