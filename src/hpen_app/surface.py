"""Stimulus surface control.

Stimuli are expressed in millimetres of surface height; the deformable
surface takes metres. `SurfaceHeightAdapter` does the conversion and keeps
the last commanded stimulus. `PlanarSurface` is a bench stand-in for a scene:
a horizontal plane at the commanded height that answers vertical ray queries.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from hpen_app.distance import RayHit, Vector3

logger = logging.getLogger(__name__)

MM_PER_M = 1000.0


class SurfaceKind(Enum):
    GAUSSIAN = "gaussian"
    NURBS = "nurbs"


# Rest height (m) added by each surface kind on top of the stimulus height.
_BASE_HEIGHT_M = {
    SurfaceKind.GAUSSIAN: 0.0,
    SurfaceKind.NURBS: 0.0025,
}


class HeightSurface(Protocol):
    def set_height(self, value: float) -> None: ...


class SurfaceHeightAdapter:
    """Forwards stimulus heights (mm) to the surface (m)."""

    def __init__(
        self,
        surface: HeightSurface | None,
        kind: SurfaceKind = SurfaceKind.GAUSSIAN,
        *,
        enabled: bool = True,
    ) -> None:
        self._surface = surface
        self.kind = kind
        self.enabled = enabled
        self._current = 0.0

    def set_height(self, value: float) -> None:
        self._current = float(value)
        if not self.enabled or self._surface is None:
            return
        self._surface.set_height(self._current / MM_PER_M + _BASE_HEIGHT_M[self.kind])
        logger.debug("Updated %s surface height to %s", self.kind.value, self._current)

    def get_current_height(self) -> float:
        """Last stimulus value sent, in millimetres."""
        return self._current


class PlanarSurface:
    """Flat surface whose height is set directly, with a ray query.

    Only rays with a downward component hit the plane; the plane has a single
    collider identity, `self.collider`.
    """

    def __init__(self, collider: str = "surface", height: float = 0.0) -> None:
        self.collider = collider
        self._height = float(height)

    @property
    def height(self) -> float:
        return self._height

    def set_height(self, value: float) -> None:
        self._height = float(value)

    def raycast(
        self, origin: Vector3, direction: Vector3, max_distance: float, layer_mask: int = -1
    ) -> list[RayHit]:
        dy = direction[1]
        if dy >= 0.0:
            return []
        distance = (self._height - origin[1]) / dy
        if distance < 0.0 or distance > max_distance:
            return []
        return [RayHit(distance=distance, collider=self.collider)]
