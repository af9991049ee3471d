"""Telemetry frames reported by the pen firmware.

The device streams one line per frame in a pipe-delimited tag format::

    P12.5|E1043|D0.031|B0|H1

Tags may appear in any subset and any order. Each decoded line produces a new
immutable `TelemetrySample`; tags missing from the line keep the value of the
previous sample.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    """Latest known device state.

    - `pressure` is the raw force-sensor reading.
    - `encoder_count` is the motor encoder position.
    - `real_distance` is the extension the pen reports it has reached.
    """

    pressure: float = 0.0
    encoder_count: int = 0
    real_distance: float = 0.0
    button_pressed: bool = False
    home_button_pressed: bool = False


def _parse_flag(text: str) -> bool:
    value = int(text)
    if value not in (0, 1):
        raise ValueError(f"flag must be 0 or 1, got {value}")
    return value == 1


# tag -> (field name, converter)
_TAGS = {
    "P": ("pressure", float),
    "E": ("encoder_count", int),
    "D": ("real_distance", float),
    "B": ("button_pressed", _parse_flag),
    "H": ("home_button_pressed", _parse_flag),
}


def parse_line(line: str, previous: TelemetrySample | None = None) -> Optional[TelemetrySample]:
    """Decode one telemetry line on top of `previous`.

    Args:
        line: Raw text received from the device (line terminator optional).
        previous: Sample whose values are kept for tags absent from the line.

    Returns:
        The updated sample, or None when no tag in the line could be decoded.
    """
    base = previous if previous is not None else TelemetrySample()
    text = line.strip()
    if not text:
        return None

    updates: dict[str, object] = {}
    for part in text.split(FIELD_SEPARATOR):
        part = part.strip()
        if not part:
            continue
        entry = _TAGS.get(part[0])
        if entry is None:
            continue
        name, convert = entry
        try:
            updates[name] = convert(part[1:])
        except ValueError:
            logger.warning("Skipping malformed telemetry field %r", part)

    if not updates:
        logger.warning("Discarding unparsable telemetry line %r", text)
        return None
    return replace(base, **updates)


class TelemetryParser:
    """Keeps the last decoded sample so partial frames accumulate."""

    def __init__(self, initial: TelemetrySample | None = None) -> None:
        self._sample = initial if initial is not None else TelemetrySample()

    @property
    def sample(self) -> TelemetrySample:
        return self._sample

    def feed(self, line: str) -> Optional[TelemetrySample]:
        """Decode `line`; publish and return the new sample, or None if discarded."""
        sample = parse_line(line, self._sample)
        if sample is not None:
            self._sample = sample
        return sample

    def reset(self) -> None:
        self._sample = TelemetrySample()
