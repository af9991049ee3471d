"""Tests for the telemetry module.

This module tests line decoding and partial-frame accumulation.
"""

from __future__ import annotations

import logging

import pytest

from hpen_app.telemetry import TelemetryParser, TelemetrySample, parse_line


# ============================================================================
# TelemetrySample Tests
# ============================================================================


class TestTelemetrySample:
    """Tests for the TelemetrySample dataclass."""

    def test_defaults(self) -> None:
        """A fresh sample should be all zero / released."""
        sample = TelemetrySample()
        assert sample.pressure == 0.0
        assert sample.encoder_count == 0
        assert sample.real_distance == 0.0
        assert sample.button_pressed is False
        assert sample.home_button_pressed is False

    def test_is_frozen(self) -> None:
        """Samples are published across threads and must be immutable."""
        sample = TelemetrySample()
        with pytest.raises(AttributeError):
            sample.pressure = 1.0  # type: ignore[misc]


# ============================================================================
# parse_line Tests
# ============================================================================


class TestParseLine:
    """Tests for the parse_line function."""

    def test_full_frame(self) -> None:
        """Every tag should be decoded into its field."""
        sample = parse_line("P12.5|E1043|D0.031|B1|H0\n")
        assert sample == TelemetrySample(
            pressure=12.5,
            encoder_count=1043,
            real_distance=0.031,
            button_pressed=True,
            home_button_pressed=False,
        )

    def test_tags_in_any_order(self) -> None:
        """Tag order should not matter."""
        sample = parse_line("H1|E-7|P3")
        assert sample.home_button_pressed is True
        assert sample.encoder_count == -7
        assert sample.pressure == 3.0

    def test_missing_tags_keep_previous_values(self) -> None:
        """Tags absent from the line should keep the previous sample's value."""
        previous = TelemetrySample(pressure=5.0, encoder_count=9, button_pressed=True)
        sample = parse_line("D0.2", previous)
        assert sample.real_distance == 0.2
        assert sample.pressure == 5.0
        assert sample.encoder_count == 9
        assert sample.button_pressed is True

    def test_malformed_field_is_skipped(self, caplog) -> None:
        """A bad field should be skipped while the rest of the line is used."""
        with caplog.at_level(logging.WARNING):
            sample = parse_line("Pabc|E12")
        assert sample.pressure == 0.0
        assert sample.encoder_count == 12
        assert "Pabc" in caplog.text

    def test_flag_outside_zero_one_is_skipped(self) -> None:
        """Flags only accept 0 and 1."""
        sample = parse_line("B2|P1")
        assert sample.button_pressed is False
        assert sample.pressure == 1.0

    def test_unknown_tags_are_ignored(self) -> None:
        """Unknown tags should not discard the line."""
        sample = parse_line("X99|P4")
        assert sample.pressure == 4.0

    @pytest.mark.parametrize("line", ["", "   ", "\n", "hello", "Pnan?|Exx", "|||"])
    def test_unparsable_line_returns_none(self, line: str) -> None:
        """Lines without any decodable tag are discarded."""
        assert parse_line(line) is None


# ============================================================================
# TelemetryParser Tests
# ============================================================================


class TestTelemetryParser:
    """Tests for the stateful TelemetryParser."""

    def test_partial_frames_accumulate(self) -> None:
        """'P10|E5' then 'B1' should leave all three values set."""
        parser = TelemetryParser()
        parser.feed("P10|E5")
        parser.feed("B1")
        assert parser.sample.pressure == 10.0
        assert parser.sample.encoder_count == 5
        assert parser.sample.button_pressed is True

    def test_discarded_line_keeps_sample(self) -> None:
        """A garbage line should not change the published sample."""
        parser = TelemetryParser()
        first = parser.feed("P7")
        assert parser.feed("garbage") is None
        assert parser.sample is first

    def test_each_decode_publishes_new_object(self) -> None:
        """Every decoded line should publish a fresh sample object."""
        parser = TelemetryParser()
        first = parser.feed("P1")
        second = parser.feed("P1")
        assert first == second
        assert first is not second

    def test_reset(self) -> None:
        """reset() should return to the default sample."""
        parser = TelemetryParser()
        parser.feed("P10|B1")
        parser.reset()
        assert parser.sample == TelemetrySample()
