"""Pen-tip distance sensing.

This module turns ray-intersection hits along the pen-tip axis into the
distance commanded to the pen actuator. It includes:
- Surface/object arbitration with grasped-object exclusion
- Pressure-driven distance shortening
- Critically damped smoothing of the commanded distance

Distances are in scene units (metres). The actuator command is derived from
`DistanceSample.smoothed_distance`.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import Optional, Protocol

from hpen_app.pressure import PressureState

Vector3 = tuple[float, float, float]

# ============================================================================
# Constants
# ============================================================================

_MIN_SMOOTHING_TIME = 1e-4

# Coefficients of the rational approximation of exp(-x) used by the filter.
_EXP_C2 = 0.48
_EXP_C3 = 0.235


# ============================================================================
# Collaborator contract
# ============================================================================


@dataclass(frozen=True, slots=True)
class RayHit:
    """One intersection reported by the spatial query."""

    distance: float
    collider: Hashable


class SpatialQuery(Protocol):
    """Ray queries against the scene."""

    def raycast(
        self, origin: Vector3, direction: Vector3, max_distance: float, layer_mask: int
    ) -> list[RayHit]:
        """Return every hit along the ray up to `max_distance`."""
        ...


@dataclass(frozen=True, slots=True)
class DistanceSample:
    """Distances computed during one control tick."""

    surface_distance: float
    object_distance: float
    calculated_distance: float
    pressure_offset: float
    raw_distance: float
    smoothed_distance: float
    smooth_velocity: float


# ============================================================================
# Pure helpers
# ============================================================================


def closest_hits(
    hits: Iterable[RayHit],
    surface_collider: Hashable | None,
    is_excluded: Callable[[Hashable], bool] | None = None,
) -> tuple[Optional[float], Optional[float]]:
    """Split hits into surface/object and return the closest distance of each.

    Hits on colliders for which `is_excluded` is true (the grasped object) are
    ignored. A missing partition is reported as None.
    """
    surface: Optional[float] = None
    obj: Optional[float] = None
    for hit in hits:
        if is_excluded is not None and is_excluded(hit.collider):
            continue
        if surface_collider is not None and hit.collider == surface_collider:
            if surface is None or hit.distance < surface:
                surface = hit.distance
        elif obj is None or hit.distance < obj:
            obj = hit.distance
    return surface, obj


def combine_distances(
    surface: Optional[float],
    obj: Optional[float],
    *,
    max_distance: float,
    offset: float = 0.0,
) -> float:
    """Combine surface and object distances into one commanded distance.

    `surface` and `obj` already include `offset`. When an object sits in front
    of the surface the difference is used only if the surface distance does
    not exceed it; this boundary rule is kept as-is.
    """
    if surface is not None and obj is not None:
        if obj < surface:
            diff = surface - obj
            return diff if surface <= diff else surface
        return surface
    if surface is not None:
        return surface
    return max_distance + offset


def smooth_damp(
    current: float,
    target: float,
    velocity: float,
    smoothing_time: float,
    dt: float,
) -> tuple[float, float]:
    """Move `current` toward `target` with a critically damped spring.

    The step is stable for any `dt` and never overshoots the target.

    Returns:
        Tuple of (new value, new velocity).
    """
    if dt <= 0.0:
        return current, velocity
    smoothing_time = max(_MIN_SMOOTHING_TIME, smoothing_time)
    omega = 2.0 / smoothing_time
    x = omega * dt
    decay = 1.0 / (1.0 + x + _EXP_C2 * x * x + _EXP_C3 * x * x * x)

    change = current - target
    temp = (velocity + omega * change) * dt
    new_velocity = (velocity - omega * temp) * decay
    output = target + (change + temp) * decay

    # Clamp when the step would carry the value past the target.
    if (target - current > 0.0) == (output > target):
        output = target
        new_velocity = (output - target) / dt
    if not math.isfinite(output):
        return target, 0.0
    return output, new_velocity


# ============================================================================
# Engine
# ============================================================================


class DistanceEngine:
    """Computes the commanded pen distance once per control tick."""

    def __init__(
        self,
        *,
        max_distance: float = 1.0,
        distance_offset: float = 0.0,
        distance_shortening_amount: float = 0.5,
        smoothing_time: float = 0.1,
        smoothing_enabled: bool = True,
    ) -> None:
        self.max_distance = float(max_distance)
        self.distance_offset = float(distance_offset)
        self.distance_shortening_amount = float(distance_shortening_amount)
        self.smoothing_time = float(smoothing_time)
        self.smoothing_enabled = bool(smoothing_enabled)

        self._pressure_offset = 0.0
        self._smoothed = 0.0
        self._velocity = 0.0
        self._last = DistanceSample(
            surface_distance=self.max_distance + self.distance_offset,
            object_distance=self.max_distance + self.distance_offset,
            calculated_distance=self.max_distance + self.distance_offset,
            pressure_offset=0.0,
            raw_distance=0.0,
            smoothed_distance=0.0,
            smooth_velocity=0.0,
        )

    @property
    def last_sample(self) -> DistanceSample:
        return self._last

    @property
    def pressure_offset(self) -> float:
        return self._pressure_offset

    @property
    def smoothed_distance(self) -> float:
        return self._smoothed

    def reset_pressure_offset(self) -> None:
        self._pressure_offset = 0.0

    def apply_pressure(self, state: PressureState) -> float:
        """Update the shortening offset for the current pressure band.

        MEDIUM keeps whatever offset the last LOW/HIGH band left behind.
        """
        if state is PressureState.HIGH:
            self._pressure_offset = self.distance_shortening_amount
        elif state is PressureState.LOW:
            self._pressure_offset = 0.0
        return self._pressure_offset

    def update(
        self,
        hits: Iterable[RayHit],
        *,
        surface_collider: Hashable | None,
        pressure_state: PressureState,
        dt: float,
        is_excluded: Callable[[Hashable], bool] | None = None,
    ) -> DistanceSample:
        surface, obj = closest_hits(hits, surface_collider, is_excluded)
        no_hit = self.max_distance + self.distance_offset
        surface_distance = surface + self.distance_offset if surface is not None else None
        object_distance = obj + self.distance_offset if obj is not None else None

        calculated = combine_distances(
            surface_distance,
            object_distance,
            max_distance=self.max_distance,
            offset=self.distance_offset,
        )
        offset = self.apply_pressure(pressure_state)
        raw = max(0.0, calculated - offset)

        if self.smoothing_enabled:
            self._smoothed, self._velocity = smooth_damp(
                self._smoothed, raw, self._velocity, self.smoothing_time, dt
            )
        else:
            self._smoothed, self._velocity = raw, 0.0
        self._smoothed = max(0.0, self._smoothed)

        self._last = DistanceSample(
            surface_distance=surface_distance if surface_distance is not None else no_hit,
            object_distance=object_distance if object_distance is not None else no_hit,
            calculated_distance=calculated,
            pressure_offset=offset,
            raw_distance=raw,
            smoothed_distance=self._smoothed,
            smooth_velocity=self._velocity,
        )
        return self._last
