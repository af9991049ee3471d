from __future__ import annotations

import logging
from collections.abc import Hashable
from typing import Protocol

from hpen_app.telemetry import TelemetrySample

logger = logging.getLogger(__name__)


class GraspCollaborator(Protocol):
    """Scene-side grasping of objects with the pen tip."""

    @property
    def is_grasping(self) -> bool: ...

    def attempt_grasp(self) -> None: ...

    def release(self) -> None: ...

    def is_grasped_collider(self, collider: Hashable) -> bool: ...


class GraspTracker:
    """Turns pen-button edges into grasp/release requests.

    The button state comes from telemetry; the tracker remembers the previous
    state so only transitions trigger the collaborator.
    """

    def __init__(self, collaborator: GraspCollaborator | None = None) -> None:
        self._collaborator = collaborator
        self._previous_pressed = False

    @property
    def enabled(self) -> bool:
        return self._collaborator is not None

    @property
    def is_grasping(self) -> bool:
        return self._collaborator is not None and self._collaborator.is_grasping

    def handle(self, sample: TelemetrySample) -> None:
        pressed = sample.button_pressed
        if self._collaborator is not None:
            if pressed and not self._previous_pressed:
                logger.debug("Pen button pressed, attempting grasp")
                self._collaborator.attempt_grasp()
            elif not pressed and self._previous_pressed:
                logger.debug("Pen button released, releasing grasp")
                self._collaborator.release()
        self._previous_pressed = pressed

    def is_grasped_collider(self, collider: Hashable) -> bool:
        """True when `collider` belongs to the object currently held."""
        if self._collaborator is None or not self._collaborator.is_grasping:
            return False
        return self._collaborator.is_grasped_collider(collider)

    def force_release(self) -> None:
        if self.is_grasping:
            self._collaborator.release()
