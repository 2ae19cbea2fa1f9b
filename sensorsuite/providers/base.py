"""Data types and collaborator protocols consumed by the sampling scheduler.

Sensor acquisition lives behind these protocols. The scheduler only polls
them; synthetic and hardware-backed implementations live alongside.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

import numpy as np


@dataclass(slots=True, frozen=True)
class Vector3:
    x: float
    y: float
    z: float


@dataclass(slots=True, frozen=True)
class Quaternion:
    x: float
    y: float
    z: float
    w: float


# ---------------------------------------------------------------------------
# Eye tracking


@dataclass(slots=True, frozen=True)
class PupilSample:
    eye: str
    diameter: float
    valid: bool = True


@dataclass(slots=True, frozen=True)
class GeometricSample:
    eye: str
    openness: float
    eye_in_skull_x: float
    eye_in_skull_y: float
    valid: bool = True


@dataclass(slots=True, frozen=True)
class GazeBehavior:
    behavior_type: str
    amplitude: float
    direction: float
    velocity: float
    onset_time: int
    duration: float
    valid: bool = True


@dataclass(slots=True, frozen=True)
class StaticEyeData:
    eye_width_max: float
    eye_height_max: float
    valid: bool = True


@dataclass(slots=True, frozen=True)
class EyeFrame:
    """One poll of the eye tracker.

    ``pupils`` and ``geometrics`` are paired by index; only pairs where both
    halves are valid produce a gaze row. The optional fields fill the
    vergence, blink, confidence and gaze pose columns when the tracker
    reports them.
    """

    pupils: Sequence[PupilSample]
    geometrics: Sequence[GeometricSample]
    gaze_behavior: Optional[GazeBehavior] = None
    static: Optional[StaticEyeData] = None
    vergence: Optional[Vector3] = None
    fixation_confidence: Optional[float] = None
    left_blink: Optional[bool] = None
    right_blink: Optional[bool] = None
    left_center_confidence: Optional[float] = None
    right_center_confidence: Optional[float] = None
    gaze_position: Optional[Vector3] = None
    gaze_rotation: Optional[Quaternion] = None

    def valid_pairs(self) -> list[tuple[PupilSample, GeometricSample]]:
        return [
            (pupil, geometric)
            for pupil, geometric in zip(self.pupils, self.geometrics)
            if pupil.valid and geometric.valid
        ]


# ---------------------------------------------------------------------------
# Motion / pose


@dataclass(slots=True, frozen=True)
class MotionReading:
    """IMU readings; ``attitude`` holds Euler angles (pitch, yaw, roll)."""

    acceleration: Optional[Vector3] = None
    angular_velocity: Optional[Vector3] = None
    linear_acceleration: Optional[Vector3] = None
    attitude: Optional[Vector3] = None


@dataclass(slots=True, frozen=True)
class HeadPose:
    position: Vector3
    rotation: Vector3
    forward: Vector3


# ---------------------------------------------------------------------------
# Camera


class ImageFormat(Enum):
    JPEG = "jpeg"
    YUV_420_888 = "yuv_420_888"
    RGBA_8888 = "rgba_8888"


class ConvergenceState(Enum):
    INACTIVE = "inactive"
    SEARCHING = "searching"
    CONVERGED = "converged"
    LOCKED = "locked"
    FLASH_REQUIRED = "flash_required"
    PRECAPTURE = "precapture"

    @property
    def settled(self) -> bool:
        return self in (ConvergenceState.CONVERGED, ConvergenceState.LOCKED)


@dataclass(slots=True, frozen=True)
class CapturedImage:
    data: bytes
    image_format: ImageFormat
    ae_state: Optional[ConvergenceState]
    awb_state: Optional[ConvergenceState]

    @property
    def exposure_settled(self) -> bool:
        return (
            self.ae_state is not None
            and self.awb_state is not None
            and self.ae_state.settled
            and self.awb_state.settled
        )


ImageCallback = Callable[[CapturedImage], None]


# ---------------------------------------------------------------------------
# Audio


@dataclass(slots=True)
class AudioClip:
    """Float samples in [-1, 1], shaped ``(frames, channels)``."""

    samples: np.ndarray
    sample_rate: int
    channels: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0]) if self.samples.ndim else 0

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate) if self.sample_rate else 0.0


@dataclass(slots=True)
class AudioRingBuffer:
    """Fixed-capacity circular buffer of float32 frames with a write cursor.

    Producers (usually an audio callback thread) call :meth:`write`; readers
    poll :meth:`read_since` with the position they last saw. A reader that
    falls more than ``capacity`` frames behind loses the oldest frames.
    """

    capacity: int
    channels: int = 1
    _data: np.ndarray = field(init=False, repr=False)
    _written: int = field(init=False, default=0)
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("capacity must be positive")
        self._data = np.zeros((self.capacity, self.channels), dtype=np.float32)
        self._written = 0

    @property
    def position(self) -> int:
        with self._lock:
            return self._written

    def write(self, block: np.ndarray) -> None:
        array = np.asarray(block, dtype=np.float32)
        if array.ndim == 1:
            array = array.reshape(-1, 1)
        if array.shape[1] != self.channels:
            array = np.repeat(array[:, :1], self.channels, axis=1)
        total = array.shape[0]
        if total > self.capacity:
            array = array[-self.capacity:]

        with self._lock:
            count = array.shape[0]
            start = (self._written + total - count) % self.capacity
            first = min(count, self.capacity - start)
            self._data[start:start + first] = array[:first]
            if first < count:
                self._data[:count - first] = array[first:]
            self._written += total

    def read_since(self, position: int) -> tuple[np.ndarray, int]:
        """Return frames written after ``position`` and the new position."""
        with self._lock:
            written = self._written
            available = written - max(0, position)
            if available <= 0:
                return np.empty((0, self.channels), dtype=np.float32), written
            available = min(available, self.capacity)
            start = (written - available) % self.capacity
            end = start + available
            if end <= self.capacity:
                chunk = self._data[start:end].copy()
            else:
                chunk = np.concatenate((self._data[start:], self._data[:end - self.capacity]))
            return chunk, written


class RingBufferSegment:
    """Audio segment that replays the ring buffer from where it began.

    A segment longer than the ring buffer is rejected up front, since the
    ring would overwrite its beginning before :meth:`finish`.
    """

    def __init__(self, ring: AudioRingBuffer, sample_rate: int, seconds: float) -> None:
        frames = int(round(float(seconds) * int(sample_rate)))
        if frames > ring.capacity:
            raise ValueError(
                f"{seconds:.1f}s segment ({frames} frames) exceeds ring buffer capacity of {ring.capacity} frames"
            )
        self._ring = ring
        self._sample_rate = int(sample_rate)
        self._seconds = float(seconds)
        self._start = ring.position
        self._cancelled = False

    def finish(self) -> AudioClip:
        if self._cancelled:
            raise RuntimeError("Segment was cancelled")
        samples, _ = self._ring.read_since(self._start)
        limit = int(round(self._seconds * self._sample_rate))
        if limit and samples.shape[0] > limit:
            samples = samples[:limit]
        return AudioClip(samples=samples, sample_rate=self._sample_rate, channels=self._ring.channels)

    def cancel(self) -> None:
        self._cancelled = True


# ---------------------------------------------------------------------------
# Collaborator protocols


class EyeTrackingProvider(Protocol):
    def read_frame(self) -> Optional[EyeFrame]:
        ...


class ExpressionProvider(Protocol):
    @property
    def channel_names(self) -> Sequence[str]:
        ...

    def read_weights(self) -> Sequence[Optional[float]]:
        """One weight per channel; ``None`` marks an invalid or untracked channel."""
        ...


class MotionProvider(Protocol):
    def read(self) -> MotionReading:
        ...


class PoseProvider(Protocol):
    def read(self) -> HeadPose:
        ...


class LightProvider(Protocol):
    def read_lux(self) -> Optional[float]:
        ...


class AudioSegment(Protocol):
    def finish(self) -> AudioClip:
        ...

    def cancel(self) -> None:
        ...


class AudioInputProvider(Protocol):
    @property
    def sample_rate(self) -> int:
        ...

    @property
    def channels(self) -> int:
        ...

    @property
    def ring_buffer(self) -> AudioRingBuffer:
        ...

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def begin_segment(self, seconds: float) -> AudioSegment:
        ...


class CameraProvider(Protocol):
    @property
    def connected(self) -> bool:
        ...

    def set_image_callback(self, callback: Optional[ImageCallback]) -> None:
        ...

    async def precapture_ae_awb(self) -> bool:
        ...

    async def capture_image(self) -> bool:
        ...

    def close(self) -> None:
        ...


__all__ = [
    "AudioClip",
    "AudioInputProvider",
    "AudioRingBuffer",
    "AudioSegment",
    "CameraProvider",
    "CapturedImage",
    "ConvergenceState",
    "ExpressionProvider",
    "EyeFrame",
    "EyeTrackingProvider",
    "GazeBehavior",
    "GeometricSample",
    "HeadPose",
    "ImageCallback",
    "ImageFormat",
    "LightProvider",
    "MotionProvider",
    "MotionReading",
    "PoseProvider",
    "PupilSample",
    "Quaternion",
    "RingBufferSegment",
    "StaticEyeData",
    "Vector3",
]
