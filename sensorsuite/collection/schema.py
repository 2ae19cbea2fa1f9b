"""Wide-row CSV schema: fixed columns, row kinds and the shared row builder.

Every row is ``len(FIXED_COLUMNS) + expression channel count`` fields wide.
Columns that do not apply to a row kind hold ``N/A``; the ``Value`` column is
empty on sample rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

from ..providers.base import EyeFrame, GeometricSample, PupilSample, Quaternion, Vector3

if TYPE_CHECKING:
    from .snapshot import SensorSnapshot

NA = "N/A"

COMMON_COLUMNS = ("Timestamp", "StudySelection", "TaskLoad", "PathType", "Event", "Value")

GAZE_COLUMNS = (
    "Eye", "Openness", "EyeInSkullX", "EyeInSkullY", "PupilDiameter",
    "GazeBehaviorType", "GazeAmplitude", "GazeDirection", "GazeVelocity",
    "GazeOnsetTime", "GazeDuration", "EyeWidthMax", "EyeHeightMax",
    "VergenceX", "VergenceY", "VergenceZ", "FixationConfidence",
    "LeftBlink", "RightBlink", "LeftCenterConfidence", "RightCenterConfidence",
)

SENSOR_COLUMNS = (
    "AccelX", "AccelY", "AccelZ", "GyroX", "GyroY", "GyroZ",
    "LinearAccelX", "LinearAccelY", "LinearAccelZ", "Pitch", "Yaw", "Roll",
    "CamPosX", "CamPosY", "CamPosZ", "CamPitch", "CamYaw", "CamRoll",
    "CamForwardX", "CamForwardY", "CamForwardZ", "LuxValue",
)

AUDIO_COLUMNS = ("AudioLevel", "AudioPeak", "AudioRMS", "AudioRecording")

GAZE_POSE_COLUMNS = ("GazePosX", "GazePosY", "GazePosZ", "GazeRotX", "GazeRotY", "GazeRotZ", "GazeRotW")

FIXED_COLUMNS: tuple[str, ...] = (
    COMMON_COLUMNS + GAZE_COLUMNS + SENSOR_COLUMNS + AUDIO_COLUMNS + GAZE_POSE_COLUMNS
)

LUX_COLUMN_INDEX = FIXED_COLUMNS.index("LuxValue")


class RowKind(Enum):
    """Row kinds; the value is what the ``Event`` column holds for samples."""

    GAZE_SAMPLE = "PUPIL_DATA"
    IMU_SAMPLE = "IMU_DATA"
    EVENT = "EVENT"


@dataclass(slots=True, frozen=True)
class GazeSample:
    pupil: PupilSample
    geometric: GeometricSample
    frame: EyeFrame


@dataclass(slots=True, frozen=True)
class AudioLevels:
    level: float
    peak: float
    rms: float


# ---------------------------------------------------------------------------
# Formatting


def format_timestamp(moment: datetime) -> str:
    """``yyyy-MM-dd HH:mm:ss.fff`` in local time."""
    return moment.strftime("%Y-%m-%d %H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


def fmt(value: Optional[float]) -> str:
    return NA if value is None else f"{value:.4f}"


def fmt_lux(value: Optional[float]) -> str:
    if value is None or value < 0:
        return NA
    return f"{value:.2f}"


def fmt_flag(value: Optional[bool]) -> str:
    return NA if value is None else str(bool(value))


def fmt_vector(vector: Optional[Vector3]) -> list[str]:
    if vector is None:
        return [NA, NA, NA]
    return [fmt(vector.x), fmt(vector.y), fmt(vector.z)]


def fmt_quaternion(rotation: Optional[Quaternion]) -> list[str]:
    if rotation is None:
        return [NA, NA, NA, NA]
    return [fmt(rotation.x), fmt(rotation.y), fmt(rotation.z), fmt(rotation.w)]


def header(expression_channels: Sequence[str] = ()) -> list[str]:
    return list(FIXED_COLUMNS) + list(expression_channels)


# ---------------------------------------------------------------------------
# Row blocks


def _gaze_block(sample: Optional[GazeSample]) -> list[str]:
    if sample is None:
        return [NA] * len(GAZE_COLUMNS)

    pupil, geometric, frame = sample.pupil, sample.geometric, sample.frame
    block = [
        str(pupil.eye),
        fmt(geometric.openness),
        fmt(geometric.eye_in_skull_x),
        fmt(geometric.eye_in_skull_y),
        fmt(pupil.diameter),
    ]

    behavior = frame.gaze_behavior
    if behavior is None:
        block.extend([NA] * 6)
    elif behavior.valid:
        block.extend([
            str(behavior.behavior_type),
            fmt(behavior.amplitude),
            fmt(behavior.direction),
            fmt(behavior.velocity),
            str(behavior.onset_time),
            fmt(behavior.duration),
        ])
    else:
        block.extend(["Invalid"] + [NA] * 5)

    static = frame.static
    if static is not None and static.valid:
        block.extend([fmt(static.eye_width_max), fmt(static.eye_height_max)])
    else:
        block.extend([NA, NA])

    block.extend(fmt_vector(frame.vergence))
    block.append(fmt(frame.fixation_confidence))
    block.append(fmt_flag(frame.left_blink))
    block.append(fmt_flag(frame.right_blink))
    block.append(fmt(frame.left_center_confidence))
    block.append(fmt(frame.right_center_confidence))
    return block


def _sensor_block(snapshot: "SensorSnapshot") -> list[str]:
    motion = snapshot.motion
    pose = snapshot.pose
    block: list[str] = []
    if motion is None:
        block.extend([NA] * 12)
    else:
        block.extend(fmt_vector(motion.acceleration))
        block.extend(fmt_vector(motion.angular_velocity))
        block.extend(fmt_vector(motion.linear_acceleration))
        block.extend(fmt_vector(motion.attitude))
    if pose is None:
        block.extend([NA] * 9)
    else:
        block.extend(fmt_vector(pose.position))
        block.extend(fmt_vector(pose.rotation))
        block.extend(fmt_vector(pose.forward))
    block.append(fmt_lux(snapshot.lux))
    return block


def _audio_block(snapshot: "SensorSnapshot", audio: Optional[AudioLevels]) -> list[str]:
    recording = snapshot.audio_recording or NA
    if audio is None:
        return [NA, NA, NA, recording]
    return [fmt(audio.level), fmt(audio.peak), fmt(audio.rms), recording]


def _gaze_pose_block(sample: Optional[GazeSample]) -> list[str]:
    if sample is None:
        return [NA] * len(GAZE_POSE_COLUMNS)
    return fmt_vector(sample.frame.gaze_position) + fmt_quaternion(sample.frame.gaze_rotation)


def _expression_block(snapshot: "SensorSnapshot") -> list[str]:
    return [fmt(weight) for weight in snapshot.expression_weights]


def build_row(
    kind: RowKind,
    snapshot: "SensorSnapshot",
    *,
    event_name: str = "",
    value: str = "",
    gaze: Optional[GazeSample] = None,
    audio: Optional[AudioLevels] = None,
) -> list[str]:
    """Assemble one full-width row.

    Gaze columns are only filled for ``GAZE_SAMPLE`` rows. For ``EVENT`` rows
    ``event_name`` and ``value`` fill the ``Event`` and ``Value`` columns;
    sample rows carry their kind tag and an empty value.
    """
    if kind is RowKind.GAZE_SAMPLE and gaze is None:
        raise ValueError("Gaze rows require a gaze sample")
    if kind is RowKind.EVENT:
        if not event_name:
            raise ValueError("Event rows require an event name")
        event_column, value_column = event_name, "" if value is None else str(value)
    else:
        event_column, value_column = kind.value, ""

    gaze_sample = gaze if kind is RowKind.GAZE_SAMPLE else None
    row = [
        snapshot.timestamp,
        snapshot.study_selection,
        snapshot.task_load,
        snapshot.path_type,
        event_column,
        value_column,
    ]
    row.extend(_gaze_block(gaze_sample))
    row.extend(_sensor_block(snapshot))
    row.extend(_audio_block(snapshot, audio))
    row.extend(_gaze_pose_block(gaze_sample))
    row.extend(_expression_block(snapshot))
    return row


__all__ = [
    "AUDIO_COLUMNS",
    "AudioLevels",
    "COMMON_COLUMNS",
    "FIXED_COLUMNS",
    "GAZE_COLUMNS",
    "GAZE_POSE_COLUMNS",
    "GazeSample",
    "LUX_COLUMN_INDEX",
    "NA",
    "RowKind",
    "SENSOR_COLUMNS",
    "build_row",
    "fmt",
    "fmt_lux",
    "format_timestamp",
    "header",
]
