"""Configuration loading + normalization for a collection session."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from ..core.errors import ConfigurationError
from ..core.paths import CONFIG_PATH, USER_DATA_DIR

AUDIO_BACKENDS: tuple[str, ...] = ("synthetic", "sounddevice")
CAMERA_BACKENDS: tuple[str, ...] = ("synthetic", "opencv", "none")

TOGGLES: tuple[tuple[str, str], ...] = (
    ("collect_eye_tracking", "eye tracking rows"),
    ("collect_imu", "IMU rows"),
    ("collect_facial", "facial expression columns"),
    ("collect_light", "light sensor events"),
    ("collect_camera_pose", "head pose columns"),
    ("collect_audio", "audio level events"),
    ("collect_video", "still frame capture"),
    ("record_audio_files", "WAV segment recording"),
)


@dataclass(slots=True)
class SuiteSettings:
    """Settings for one collection run, from config.txt overlaid by the CLI."""

    output_dir: Path = USER_DATA_DIR
    eye_frequency: float = 60.0
    imu_frequency: float = 30.0
    light_frequency: float = 1.0
    audio_frequency: float = 10.0
    video_capture_interval: float = 0.5
    audio_segment_length: float = 10.0
    collect_eye_tracking: bool = True
    collect_imu: bool = True
    collect_facial: bool = True
    collect_light: bool = True
    collect_camera_pose: bool = True
    collect_audio: bool = True
    collect_video: bool = True
    record_audio_files: bool = True
    audio_sensitivity: float = 0.02
    buffer_size: int = 8192
    flush_interval: int = 100
    auto_flush_time: float = 5.0
    tick_interval: float = 0.005
    study_selection: str = "DefaultStudy"
    task_load: str = "Medium"
    path_type: str = "Default"
    log_level: str = "info"
    log_file: Optional[Path] = None
    duration: float = 0.0
    subject_id: Optional[str] = None
    audio_backend: str = "synthetic"
    camera_backend: str = "synthetic"
    seed: Optional[int] = None
    status_interval: float = 5.0

    def validate(self) -> "SuiteSettings":
        positive = (
            "eye_frequency",
            "imu_frequency",
            "light_frequency",
            "audio_frequency",
            "video_capture_interval",
            "audio_segment_length",
            "audio_sensitivity",
            "buffer_size",
            "flush_interval",
            "auto_flush_time",
            "tick_interval",
            "status_interval",
        )
        for name in positive:
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive (got {value})")
        if self.duration < 0:
            raise ConfigurationError(f"duration must be zero or positive (got {self.duration})")
        if self.audio_backend not in AUDIO_BACKENDS:
            raise ConfigurationError(f"Unknown audio backend '{self.audio_backend}'")
        if self.camera_backend not in CAMERA_BACKENDS:
            raise ConfigurationError(f"Unknown camera backend '{self.camera_backend}'")
        return self

    @classmethod
    def from_args(cls, args: Any) -> "SuiteSettings":
        """Create a validated settings instance from an argparse namespace."""

        defaults = cls()
        values: dict[str, Any] = {}
        for spec in fields(cls):
            raw = getattr(args, spec.name, getattr(defaults, spec.name))
            values[spec.name] = _coerce(spec.name, raw, getattr(defaults, spec.name))
        return cls(**values).validate()

    @classmethod
    def from_mapping(cls, config: Mapping[str, object]) -> "SuiteSettings":
        return cls.from_args(argparse.Namespace(**dict(config)))


def _coerce(name: str, value: Any, fallback: Any) -> Any:
    try:
        if name in {"output_dir", "log_file"}:
            return Path(str(value)).expanduser() if value not in (None, "") else fallback
        if name in {"subject_id", "seed"}:
            if value in (None, ""):
                return None
            return int(value) if name == "seed" else str(value).strip() or None
        if isinstance(fallback, bool):
            if isinstance(value, str):
                return value.strip().lower() in {"true", "yes", "on", "1"}
            return bool(value)
        if isinstance(fallback, int):
            return int(value)
        if isinstance(fallback, float):
            return float(value)
        if isinstance(fallback, str):
            return str(value).strip().lower() if name.endswith("_backend") or name == "log_level" else str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from exc
    return value


def read_config_file(path: Path) -> dict[str, object]:
    """Parse ``key = value`` lines into typed values (bool, int, float or str)."""

    config: dict[str, object] = {}
    if not path.exists():
        return config

    text = path.read_text(encoding="utf-8")
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = [part.strip() for part in line.split("=", 1)]
        if not key:
            continue
        lowered = value.lower()
        if lowered in {"true", "yes", "on"}:
            config[key] = True
        elif lowered in {"false", "no", "off"}:
            config[key] = False
        else:
            try:
                if "." in value:
                    config[key] = float(value)
                else:
                    config[key] = int(value)
            except ValueError:
                config[key] = value
    return config


def _config_value(config: Mapping[str, object], key: str, fallback: Any) -> Any:
    value = config.get(key, fallback)
    if isinstance(value, str) and (
        isinstance(fallback, Path)
        or key.endswith("_dir")
        or key.endswith("_file")
    ):
        return Path(value)
    return value


def _add_toggle(
    parser: Any,
    config: Mapping[str, object],
    name: str,
    default: bool,
    description: str,
) -> None:
    flag = name.replace("_", "-")
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        f"--{flag}",
        dest=name,
        action="store_true",
        default=bool(_config_value(config, name, default)),
        help=f"Enable {description}",
    )
    group.add_argument(
        f"--no-{flag}",
        dest=name,
        action="store_false",
        help=f"Disable {description}",
    )


def build_arg_parser(config: Mapping[str, object]) -> argparse.ArgumentParser:
    """Build the sensorsuite argument parser; config-file values become the defaults."""

    defaults = SuiteSettings()
    parser = argparse.ArgumentParser(
        prog="sensorsuite",
        description="Multi-rate sensor sampling to a wide CSV log",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to a key = value configuration file",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=_config_value(config, "output_dir", defaults.output_dir),
        help="Root directory for SensorData, VideoFrames and AudioRecordings",
    )
    parser.add_argument(
        "--subject-id",
        type=str,
        default=_config_value(config, "subject_id", defaults.subject_id),
        help="Subject identifier (random 6 characters when omitted)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=_config_value(config, "duration", defaults.duration),
        help="Seconds to collect before stopping (0 = until interrupted)",
    )

    rates = parser.add_argument_group("sampling")
    for name, help_text in (
        ("eye_frequency", "Eye tracking sampling rate (Hz)"),
        ("imu_frequency", "IMU sampling rate (Hz)"),
        ("light_frequency", "Light sensor sampling rate (Hz)"),
        ("audio_frequency", "Audio level sampling rate (Hz)"),
        ("video_capture_interval", "Seconds between still captures"),
        ("audio_segment_length", "Length of each WAV segment (s)"),
        ("audio_sensitivity", "Peak threshold for AUDIO_ACTIVITY events"),
        ("tick_interval", "Scheduler tick interval (s)"),
    ):
        rates.add_argument(
            f"--{name.replace('_', '-')}",
            type=float,
            default=_config_value(config, name, getattr(defaults, name)),
            help=help_text,
        )

    buffering = parser.add_argument_group("buffering")
    buffering.add_argument(
        "--buffer-size",
        type=int,
        default=_config_value(config, "buffer_size", defaults.buffer_size),
        help="Flush once this many bytes are buffered",
    )
    buffering.add_argument(
        "--flush-interval",
        type=int,
        default=_config_value(config, "flush_interval", defaults.flush_interval),
        help="Flush every N entries",
    )
    buffering.add_argument(
        "--auto-flush-time",
        type=float,
        default=_config_value(config, "auto_flush_time", defaults.auto_flush_time),
        help="Flush when this many seconds passed since the last flush",
    )

    categories = parser.add_argument_group("categories")
    for name, description in TOGGLES:
        _add_toggle(categories, config, name, getattr(defaults, name), description)

    context = parser.add_argument_group("session context")
    for name in ("study_selection", "task_load", "path_type"):
        context.add_argument(
            f"--{name.replace('_', '-')}",
            type=str,
            default=_config_value(config, name, getattr(defaults, name)),
        )

    backends = parser.add_argument_group("backends")
    backends.add_argument(
        "--audio-backend",
        choices=AUDIO_BACKENDS,
        default=str(_config_value(config, "audio_backend", defaults.audio_backend)).lower(),
    )
    backends.add_argument(
        "--camera-backend",
        choices=CAMERA_BACKENDS,
        default=str(_config_value(config, "camera_backend", defaults.camera_backend)).lower(),
    )
    backends.add_argument(
        "--seed",
        type=int,
        default=_config_value(config, "seed", defaults.seed),
        help="Seed for the synthetic providers",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=_config_value(config, "log_level", defaults.log_level),
        help="Logging verbosity",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=_config_value(config, "log_file", defaults.log_file),
        help="Optional explicit log file path",
    )
    parser.add_argument(
        "--status-interval",
        type=float,
        default=_config_value(config, "status_interval", defaults.status_interval),
        help="Seconds between status log lines",
    )

    return parser


def parse_cli_args(
    argv: Optional[list[str]] = None,
    *,
    config_path: Optional[Path] = None,
) -> argparse.Namespace:
    """Parse CLI arguments using configuration defaults.

    ``--config`` is resolved first so the file it names supplies the defaults.
    """

    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=Path, default=config_path or CONFIG_PATH)
    known, _ = pre.parse_known_args(argv)

    config = read_config_file(known.config)
    parser = build_arg_parser(config)
    parser.set_defaults(config=known.config)
    return parser.parse_args(argv)


__all__ = [
    "AUDIO_BACKENDS",
    "CAMERA_BACKENDS",
    "SuiteSettings",
    "build_arg_parser",
    "parse_cli_args",
    "read_config_file",
]
