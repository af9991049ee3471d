"""Session object owning the pen runtime.

`PenSession` wires the serial link, telemetry decoding, distance sensing and
trial sequencing together. Collaborators are injected once at construction.

Two execution contexts share it:
- the serial reader thread, sole writer of telemetry and pressure state;
- the control loop calling `tick()` once per frame, sole writer of the
  distance sample and trial state.

Telemetry crosses between them as immutable samples published by reference.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

from hpen_app.device.commands import CommandEncoder
from hpen_app.device.serial_link import SerialTransport
from hpen_app.distance import DistanceEngine, DistanceSample, SpatialQuery, Vector3
from hpen_app.grasp import GraspTracker
from hpen_app.jnd.trial_machine import TrialStateMachine
from hpen_app.pressure import PressureState, PressureStateMachine
from hpen_app.surface import SurfaceHeightAdapter
from hpen_app.telemetry import TelemetryParser, TelemetrySample

logger = logging.getLogger(__name__)

PoseSource = Callable[[], tuple[Vector3, Vector3]]


def ray_origin(tip: Vector3, forward: Vector3, pull_back: float) -> Vector3:
    """Start the ray slightly behind the tip so touching surfaces still register."""
    return (
        tip[0] - forward[0] * pull_back,
        tip[1] - forward[1] * pull_back,
        tip[2] - forward[2] * pull_back,
    )


class PenSession:
    """Everything one experiment run needs, owned in one place."""

    def __init__(
        self,
        *,
        transport: SerialTransport,
        pressure: PressureStateMachine,
        distance: DistanceEngine,
        encoder: CommandEncoder,
        spatial_query: SpatialQuery,
        pose_source: PoseSource,
        surface: SurfaceHeightAdapter,
        trials: TrialStateMachine,
        grasp: GraspTracker | None = None,
        surface_collider: Any = "surface",
        ray_origin_offset: float = 0.05,
        layer_mask: int = -1,
    ) -> None:
        self.transport = transport
        self.pressure = pressure
        self.distance = distance
        self.encoder = encoder
        self.spatial_query = spatial_query
        self.pose_source = pose_source
        self.surface = surface
        self.trials = trials
        self.grasp = grasp if grasp is not None else GraspTracker()
        self.surface_collider = surface_collider
        self.ray_origin_offset = float(ray_origin_offset)
        self.layer_mask = int(layer_mask)

        self._parser = TelemetryParser()
        self._telemetry = self._parser.sample
        self.transport.on_line = self.handle_line

    # -------------------------------------------------------------------------
    # Reader side
    # -------------------------------------------------------------------------

    def handle_line(self, line: str) -> Optional[TelemetrySample]:
        """Decode one telemetry line (called from the reader thread)."""
        sample = self._parser.feed(line)
        if sample is None:
            return None
        self.pressure.update(sample.pressure)
        self._telemetry = sample
        return sample

    @property
    def telemetry(self) -> TelemetrySample:
        return self._telemetry

    @property
    def pressure_state(self) -> PressureState:
        return self.pressure.state

    # -------------------------------------------------------------------------
    # Control loop
    # -------------------------------------------------------------------------

    def tick(self, dt: float) -> DistanceSample:
        """Run one control-loop frame of `dt` seconds."""
        self.grasp.handle(self._telemetry)

        tip, forward = self.pose_source()
        hits = self.spatial_query.raycast(
            ray_origin(tip, forward, self.ray_origin_offset),
            forward,
            self.distance.max_distance,
            self.layer_mask,
        )
        sample = self.distance.update(
            hits,
            surface_collider=self.surface_collider,
            pressure_state=self.pressure.state,
            dt=dt,
            is_excluded=self.grasp.is_grasped_collider,
        )
        self.encoder.send_distance(sample.smoothed_distance)
        self.trials.tick(dt)
        return sample

    # -------------------------------------------------------------------------
    # Link management
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    def open(self) -> bool:
        connected = self.transport.connect()
        self.transport.start_reader()
        return connected

    def reconnect(self) -> bool:
        """Reopen the serial link and clear the pressure shortening offset."""
        logger.info("Reconnecting to pen controller")
        self.distance.reset_pressure_offset()
        self.encoder.reset()
        return self.transport.reconnect()

    def send_test(self) -> bool:
        return self.encoder.send_test()

    def reset_pressure_offset(self) -> None:
        self.distance.reset_pressure_offset()

    def close(self) -> None:
        self.trials.stop()
        self.grasp.force_release()
        self.transport.shutdown()

    # -------------------------------------------------------------------------
    # Trials and surface
    # -------------------------------------------------------------------------

    def start_sequence(self) -> bool:
        return self.trials.start()

    def stop_sequence(self) -> None:
        self.trials.stop()

    def respond(self, detected: bool) -> bool:
        return self.trials.respond(detected)

    def set_height(self, value: float) -> None:
        self.surface.set_height(value)

    def get_current_height(self) -> float:
        return self.surface.get_current_height()

    def status(self) -> dict[str, Any]:
        """Snapshot of the values shown on the operator display."""
        d = self.distance.last_sample
        t = self._telemetry
        return {
            "connected": self.transport.is_connected,
            "raw_distance": d.raw_distance,
            "smoothed_distance": d.smoothed_distance,
            "surface_distance": d.surface_distance,
            "object_distance": d.object_distance,
            "calculated_distance": d.calculated_distance,
            "pressure_offset": d.pressure_offset,
            "pressure": t.pressure,
            "pressure_state": self.pressure.state.name,
            "encoder_count": t.encoder_count,
            "real_distance": t.real_distance,
            "button_pressed": t.button_pressed,
            "home_button_pressed": t.home_button_pressed,
            "grasping": self.grasp.is_grasping,
            "trial_running": self.trials.is_running,
            "trial_state": self.trials.state.name,
            "trial_index": self.trials.current_index,
            "trial_position": self.trials.position,
            "trial_total": self.trials.total,
            "trial_status": self.trials.status_text(),
            "surface_height": self.surface.get_current_height(),
        }
