from __future__ import annotations

import configparser
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QStandardPaths

from hpen_app.jnd.trial_machine import TrialTiming
from hpen_app.jnd.trial_spec import TrialSpec, trial_spec_from_dict, trial_spec_to_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SerialConfig:
    port: str
    baud_rate: int
    timeout_ms: int
    log_serial_data: bool = False


@dataclass(frozen=True)
class PenConfig:
    """Distance sensing and pressure response settings."""

    pressure_threshold1: float
    pressure_threshold2: float
    distance_shortening_amount: float
    max_distance: float
    distance_offset: float
    ray_origin_offset: float
    smoothing_enabled: bool = True
    smoothing_time: float = 0.1
    send_interval_ms: int = 50
    surface_collider: str = "surface"
    layer_mask: int = -1
    bench_tip_height: float = 0.05


@dataclass(frozen=True)
class SessionConfig:
    """Trial sequencing settings persisted to config.ini."""

    timing: TrialTiming
    participant: int = 1
    surface_kind: str = "gaussian"
    use_surface: bool = True
    frame_hz: int = 90


# -------------------------------------------------------------------------
# Default values for all settings
# -------------------------------------------------------------------------

# Serial defaults
DEFAULT_PORT: str = "COM6"
DEFAULT_BAUD_RATE: int = 115200
DEFAULT_TIMEOUT_MS: int = 100

# Pen defaults
DEFAULT_PRESSURE_THRESHOLD1: float = 10.0
DEFAULT_PRESSURE_THRESHOLD2: float = 30.0
DEFAULT_DISTANCE_SHORTENING: float = 0.5
DEFAULT_MAX_DISTANCE: float = 1.0
DEFAULT_DISTANCE_OFFSET: float = 0.0
DEFAULT_RAY_ORIGIN_OFFSET: float = 0.05
DEFAULT_SMOOTHING_TIME: float = 0.1
DEFAULT_SEND_INTERVAL_MS: int = 50

# Trial defaults
DEFAULT_BLINK_COUNT: int = 3
DEFAULT_FRAME_HZ: int = 90

TESTS_FILE_NAME = "tests.json"


def config_path() -> Path:
    config_dir = Path(QStandardPaths.writableLocation(QStandardPaths.AppConfigLocation))
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir / "config.ini"


def tests_path() -> Path:
    return config_path().with_name(TESTS_FILE_NAME)


def _bool(value: bool) -> str:
    return "true" if value else "false"


def ensure_config_exists() -> None:
    """Create config.ini with all default values if it doesn't exist."""
    path = config_path()
    if path.exists():
        return
    parser = configparser.ConfigParser()
    _write_serial_section(parser, default_serial_config())
    _write_pen_section(parser, default_pen_config())
    _write_trial_section(parser, default_session_config())
    with path.open("w", encoding="utf-8") as f:
        parser.write(f)


def _read_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    path = config_path()
    if path.exists():
        parser.read(path, encoding="utf-8")
    return parser


def _save_parser(parser: configparser.ConfigParser) -> None:
    with config_path().open("w", encoding="utf-8") as f:
        parser.write(f)


# -------------------------------------------------------------------------
# [serial]
# -------------------------------------------------------------------------


def default_serial_config() -> SerialConfig:
    return SerialConfig(port=DEFAULT_PORT, baud_rate=DEFAULT_BAUD_RATE, timeout_ms=DEFAULT_TIMEOUT_MS)


def load_serial_config() -> SerialConfig:
    parser = _read_parser()
    if "serial" not in parser:
        return default_serial_config()
    section = parser["serial"]
    try:
        return SerialConfig(
            port=section.get("port", DEFAULT_PORT).strip() or DEFAULT_PORT,
            baud_rate=int(section.get("baud_rate", str(DEFAULT_BAUD_RATE))),
            timeout_ms=max(1, int(section.get("timeout_ms", str(DEFAULT_TIMEOUT_MS)))),
            log_serial_data=section.getboolean("log_serial_data", fallback=False),
        )
    except ValueError:
        logger.warning("Invalid [serial] section in %s, using defaults", config_path())
        return default_serial_config()


def _write_serial_section(parser: configparser.ConfigParser, cfg: SerialConfig) -> None:
    parser["serial"] = {
        "port": cfg.port,
        "baud_rate": str(int(cfg.baud_rate)),
        "timeout_ms": str(int(cfg.timeout_ms)),
        "log_serial_data": _bool(cfg.log_serial_data),
    }


def save_serial_config(cfg: SerialConfig) -> None:
    parser = _read_parser()
    _write_serial_section(parser, cfg)
    _save_parser(parser)


# -------------------------------------------------------------------------
# [pen]
# -------------------------------------------------------------------------


def default_pen_config() -> PenConfig:
    return PenConfig(
        pressure_threshold1=DEFAULT_PRESSURE_THRESHOLD1,
        pressure_threshold2=DEFAULT_PRESSURE_THRESHOLD2,
        distance_shortening_amount=DEFAULT_DISTANCE_SHORTENING,
        max_distance=DEFAULT_MAX_DISTANCE,
        distance_offset=DEFAULT_DISTANCE_OFFSET,
        ray_origin_offset=DEFAULT_RAY_ORIGIN_OFFSET,
        smoothing_time=DEFAULT_SMOOTHING_TIME,
        send_interval_ms=DEFAULT_SEND_INTERVAL_MS,
    )


def load_pen_config() -> PenConfig:
    parser = _read_parser()
    if "pen" not in parser:
        return default_pen_config()
    section = parser["pen"]
    try:
        threshold1 = section.getfloat("pressure_threshold1", fallback=DEFAULT_PRESSURE_THRESHOLD1)
        threshold2 = section.getfloat("pressure_threshold2", fallback=DEFAULT_PRESSURE_THRESHOLD2)
        if threshold1 >= threshold2:
            raise ValueError("pressure_threshold1 must be below pressure_threshold2")
        return PenConfig(
            pressure_threshold1=threshold1,
            pressure_threshold2=threshold2,
            distance_shortening_amount=section.getfloat(
                "distance_shortening_amount", fallback=DEFAULT_DISTANCE_SHORTENING
            ),
            max_distance=max(0.0, section.getfloat("max_distance", fallback=DEFAULT_MAX_DISTANCE)),
            distance_offset=max(-1.0, min(1.0, section.getfloat("distance_offset", fallback=DEFAULT_DISTANCE_OFFSET))),
            ray_origin_offset=max(
                0.01, min(1.0, section.getfloat("ray_origin_offset", fallback=DEFAULT_RAY_ORIGIN_OFFSET))
            ),
            smoothing_enabled=section.getboolean("smoothing_enabled", fallback=True),
            smoothing_time=max(0.01, min(1.0, section.getfloat("smoothing_time", fallback=DEFAULT_SMOOTHING_TIME))),
            send_interval_ms=max(1, section.getint("send_interval_ms", fallback=DEFAULT_SEND_INTERVAL_MS)),
            surface_collider=section.get("surface_collider", fallback="surface").strip() or "surface",
            layer_mask=section.getint("layer_mask", fallback=-1),
            bench_tip_height=section.getfloat("bench_tip_height", fallback=0.05),
        )
    except ValueError as exc:
        logger.warning("Invalid [pen] section in %s (%s), using defaults", config_path(), exc)
        return default_pen_config()


def _write_pen_section(parser: configparser.ConfigParser, cfg: PenConfig) -> None:
    parser["pen"] = {
        "pressure_threshold1": str(cfg.pressure_threshold1),
        "pressure_threshold2": str(cfg.pressure_threshold2),
        "distance_shortening_amount": str(cfg.distance_shortening_amount),
        "max_distance": str(cfg.max_distance),
        "distance_offset": str(cfg.distance_offset),
        "ray_origin_offset": str(cfg.ray_origin_offset),
        "smoothing_enabled": _bool(cfg.smoothing_enabled),
        "smoothing_time": str(cfg.smoothing_time),
        "send_interval_ms": str(int(cfg.send_interval_ms)),
        "surface_collider": cfg.surface_collider,
        "layer_mask": str(int(cfg.layer_mask)),
        "bench_tip_height": str(cfg.bench_tip_height),
    }


def save_pen_config(cfg: PenConfig) -> None:
    parser = _read_parser()
    _write_pen_section(parser, cfg)
    _save_parser(parser)


# -------------------------------------------------------------------------
# [trial]
# -------------------------------------------------------------------------


def default_session_config() -> SessionConfig:
    return SessionConfig(timing=TrialTiming())


def load_session_config() -> SessionConfig:
    parser = _read_parser()
    if "trial" not in parser:
        return default_session_config()
    section = parser["trial"]
    defaults = TrialTiming()
    try:
        timing = TrialTiming(
            fast_mode=section.getboolean("fast_mode", fallback=defaults.fast_mode),
            blink_count=max(0, section.getint("blink_count", fallback=DEFAULT_BLINK_COUNT)),
            wait_at_end_s=max(0.0, section.getfloat("wait_at_end_s", fallback=defaults.wait_at_end_s)),
            delay_between_s=max(0.0, section.getfloat("delay_between_s", fallback=defaults.delay_between_s)),
            stimulus_duration_s=max(
                0.0, section.getfloat("stimulus_duration_s", fallback=defaults.stimulus_duration_s)
            ),
            pacing_fallback_s=max(0.0, section.getfloat("pacing_fallback_s", fallback=defaults.pacing_fallback_s)),
            delay_between_tests_s=max(
                0.0, section.getfloat("delay_between_tests_s", fallback=defaults.delay_between_tests_s)
            ),
            randomize_order=section.getboolean("randomize_order", fallback=defaults.randomize_order),
        )
        surface_kind = section.get("surface_kind", fallback="gaussian").strip().lower()
        if surface_kind not in ("gaussian", "nurbs"):
            surface_kind = "gaussian"
        return SessionConfig(
            timing=timing,
            participant=max(1, section.getint("participant", fallback=1)),
            surface_kind=surface_kind,
            use_surface=section.getboolean("use_surface", fallback=True),
            frame_hz=max(10, min(240, section.getint("frame_hz", fallback=DEFAULT_FRAME_HZ))),
        )
    except ValueError:
        logger.warning("Invalid [trial] section in %s, using defaults", config_path())
        return default_session_config()


def _write_trial_section(parser: configparser.ConfigParser, cfg: SessionConfig) -> None:
    t = cfg.timing
    parser["trial"] = {
        "fast_mode": _bool(t.fast_mode),
        "blink_count": str(int(t.blink_count)),
        "wait_at_end_s": str(t.wait_at_end_s),
        "delay_between_s": str(t.delay_between_s),
        "stimulus_duration_s": str(t.stimulus_duration_s),
        "pacing_fallback_s": str(t.pacing_fallback_s),
        "delay_between_tests_s": str(t.delay_between_tests_s),
        "randomize_order": _bool(t.randomize_order),
        "participant": str(int(cfg.participant)),
        "surface_kind": cfg.surface_kind,
        "use_surface": _bool(cfg.use_surface),
        "frame_hz": str(int(cfg.frame_hz)),
    }


def save_session_config(cfg: SessionConfig) -> None:
    parser = _read_parser()
    _write_trial_section(parser, cfg)
    _save_parser(parser)


# -------------------------------------------------------------------------
# tests.json
# -------------------------------------------------------------------------


def load_trial_specs(path: Optional[Path] = None) -> list[TrialSpec]:
    """Load the test configurations; a missing or broken file yields no tests."""
    path = path or tests_path()
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Could not read test configurations from %s: %s", path, exc)
        return []
    if isinstance(data, dict):
        data = data.get("tests", [])
    specs: list[TrialSpec] = []
    for i, item in enumerate(data if isinstance(data, list) else []):
        try:
            specs.append(trial_spec_from_dict(item))
        except (AttributeError, TypeError, ValueError) as exc:
            logger.error("Skipping test configuration #%d in %s: %s", i + 1, path, exc)
    return specs


def save_trial_specs(specs: list[TrialSpec], path: Optional[Path] = None) -> None:
    path = path or tests_path()
    payload = {"tests": [trial_spec_to_dict(s) for s in specs]}
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
