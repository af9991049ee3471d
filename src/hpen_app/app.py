import logging
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QStandardPaths

from hpen_app.config import (
    PenConfig,
    SerialConfig,
    SessionConfig,
    ensure_config_exists,
    load_pen_config,
    load_serial_config,
    load_session_config,
    load_trial_specs,
)
from hpen_app.device.commands import CommandEncoder
from hpen_app.device.serial_link import SerialTransport
from hpen_app.distance import DistanceEngine
from hpen_app.grasp import GraspTracker
from hpen_app.jnd.pacing import TimedPacingCue
from hpen_app.jnd.staircase import FixedStepStaircase
from hpen_app.jnd.trial_machine import TrialStateMachine
from hpen_app.pressure import PressureStateMachine
from hpen_app.session import PenSession
from hpen_app.surface import PlanarSurface, SurfaceHeightAdapter, SurfaceKind

logger = logging.getLogger(__name__)

APP_NAME = "Haptic Pen JND"
APP_VERSION = "0.1.0"

# The bench pen points straight down at the planar surface.
_BENCH_FORWARD = (0.0, -1.0, 0.0)


def ensure_user_config_dir() -> Path:
    """Ensure a writable config directory exists and return it."""
    config_dir = Path(QStandardPaths.writableLocation(QStandardPaths.AppConfigLocation))
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def create_application() -> QCoreApplication:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s - %(message)s")
    app = QCoreApplication(sys.argv)
    app.setApplicationName(APP_NAME)
    app.setApplicationVersion(APP_VERSION)
    ensure_user_config_dir()
    ensure_config_exists()
    return app


def create_session(
    serial_cfg: SerialConfig | None = None,
    pen_cfg: PenConfig | None = None,
    session_cfg: SessionConfig | None = None,
    *,
    transport: SerialTransport | None = None,
) -> PenSession:
    """Wire a session against a planar bench surface.

    Settings default to what is stored in config.ini and tests.json.
    """
    serial_cfg = serial_cfg or load_serial_config()
    pen_cfg = pen_cfg or load_pen_config()
    session_cfg = session_cfg or load_session_config()

    if transport is None:
        transport = SerialTransport(
            serial_cfg.port,
            serial_cfg.baud_rate,
            timeout_s=serial_cfg.timeout_ms / 1000.0,
            log_traffic=serial_cfg.log_serial_data,
        )

    plane = PlanarSurface(collider=pen_cfg.surface_collider)
    surface = SurfaceHeightAdapter(
        plane,
        SurfaceKind(session_cfg.surface_kind),
        enabled=session_cfg.use_surface,
    )
    trials = TrialStateMachine(
        load_trial_specs(),
        FixedStepStaircase(),
        surface,
        pacing=TimedPacingCue(),
        timing=session_cfg.timing,
        participant=session_cfg.participant,
    )

    def bench_pose():
        return (0.0, plane.height + pen_cfg.bench_tip_height, 0.0), _BENCH_FORWARD

    return PenSession(
        transport=transport,
        pressure=PressureStateMachine(pen_cfg.pressure_threshold1, pen_cfg.pressure_threshold2),
        distance=DistanceEngine(
            max_distance=pen_cfg.max_distance,
            distance_offset=pen_cfg.distance_offset,
            distance_shortening_amount=pen_cfg.distance_shortening_amount,
            smoothing_time=pen_cfg.smoothing_time,
            smoothing_enabled=pen_cfg.smoothing_enabled,
        ),
        encoder=CommandEncoder(transport, send_interval_s=pen_cfg.send_interval_ms / 1000.0),
        spatial_query=plane,
        pose_source=bench_pose,
        surface=surface,
        trials=trials,
        grasp=GraspTracker(),
        surface_collider=pen_cfg.surface_collider,
        ray_origin_offset=pen_cfg.ray_origin_offset,
        layer_mask=pen_cfg.layer_mask,
    )


# Operator console commands, one per line on stdin.
CONSOLE_COMMANDS = {
    "y": "difference detected",
    "n": "difference not detected",
    "s": "start test sequence",
    "x": "stop test sequence",
    "r": "reconnect serial link",
    "t": "send TEST to the controller",
    "0": "reset pressure offset",
    "?": "print status",
}


def dispatch_command(session: PenSession, text: str) -> bool:
    """Apply one console command to the session. Returns False if unknown."""
    command = text.strip().lower()
    if command == "y":
        session.respond(True)
    elif command == "n":
        session.respond(False)
    elif command == "s":
        session.start_sequence()
    elif command == "x":
        session.stop_sequence()
    elif command == "r":
        session.reconnect()
    elif command == "t":
        session.send_test()
    elif command == "0":
        session.reset_pressure_offset()
    elif command == "?":
        for key, value in session.status().items():
            logger.info("%s: %s", key, value)
    else:
        return False
    return True
