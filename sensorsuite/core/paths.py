"""Centralized path constants for SensorSuite output."""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

# Default configuration file (optional)
CONFIG_PATH = PROJECT_ROOT / "config.txt"

# User-writable data root (allows running from read-only project directories)
_DATA_DIR_ENV = os.environ.get("SENSORSUITE_DATA_DIR")
USER_DATA_DIR = Path(_DATA_DIR_ENV).expanduser() if _DATA_DIR_ENV else (Path.home() / ".sensorsuite")

# Per-artifact subdirectories
SENSOR_DATA_SUBDIR = "SensorData"
VIDEO_FRAMES_SUBDIR = "VideoFrames"
AUDIO_RECORDINGS_SUBDIR = "AudioRecordings"
LOGS_SUBDIR = "logs"


def sensor_data_dir(root: Path) -> Path:
    return Path(root) / SENSOR_DATA_SUBDIR


def video_frames_dir(root: Path) -> Path:
    return Path(root) / VIDEO_FRAMES_SUBDIR


def audio_recordings_dir(root: Path) -> Path:
    return Path(root) / AUDIO_RECORDINGS_SUBDIR


def ensure_directories(root: Path) -> None:
    """Create the artifact directories under ``root`` if they don't exist."""

    for directory in (sensor_data_dir(root), video_frames_dir(root), audio_recordings_dir(root)):
        directory.mkdir(parents=True, exist_ok=True)


__all__ = [
    "AUDIO_RECORDINGS_SUBDIR",
    "CONFIG_PATH",
    "LOGS_SUBDIR",
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
    "SENSOR_DATA_SUBDIR",
    "USER_DATA_DIR",
    "VIDEO_FRAMES_SUBDIR",
    "audio_recordings_dir",
    "ensure_directories",
    "sensor_data_dir",
    "video_frames_dir",
]
