"""Deterministic, seedable stand-ins for every sensor collaborator.

Used by the CLI when no hardware backend is selected and by the tests.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, Optional, Sequence

import numpy as np

from ..core.logging_utils import get_module_logger
from .base import (
    AudioRingBuffer,
    CapturedImage,
    ConvergenceState,
    EyeFrame,
    GazeBehavior,
    GeometricSample,
    HeadPose,
    ImageCallback,
    ImageFormat,
    MotionReading,
    PupilSample,
    Quaternion,
    RingBufferSegment,
    StaticEyeData,
    Vector3,
)

logger = get_module_logger("Synthetic")

DEFAULT_EXPRESSION_CHANNELS = (
    "BrowLowererL",
    "BrowLowererR",
    "CheekRaiserL",
    "CheekRaiserR",
    "JawDrop",
    "LidTightenerL",
    "LidTightenerR",
    "LipCornerPullerL",
    "LipCornerPullerR",
    "UpperLidRaiserL",
    "UpperLidRaiserR",
)

GAZE_BEHAVIORS = ("Fixation", "Saccade", "Pursuit", "Unknown")


def _vector(values) -> Vector3:
    return Vector3(float(values[0]), float(values[1]), float(values[2]))


class SyntheticEyeTracker:
    """Binocular tracker producing plausible pupil and gaze values."""

    def __init__(
        self,
        seed: Optional[int] = None,
        *,
        invalid_probability: float = 0.0,
        missing_probability: float = 0.0,
    ) -> None:
        self._rng = np.random.default_rng(seed)
        self.invalid_probability = invalid_probability
        self.missing_probability = missing_probability

    def read_frame(self) -> Optional[EyeFrame]:
        rng = self._rng
        if self.missing_probability and rng.random() < self.missing_probability:
            return None

        pupils = []
        geometrics = []
        for eye in ("Left", "Right"):
            valid = not (self.invalid_probability and rng.random() < self.invalid_probability)
            pupils.append(PupilSample(eye=eye, diameter=float(rng.normal(0.0035, 0.0003)), valid=valid))
            geometrics.append(
                GeometricSample(
                    eye=eye,
                    openness=float(np.clip(rng.normal(0.85, 0.05), 0.0, 1.0)),
                    eye_in_skull_x=float(rng.normal(0.0, 0.1)),
                    eye_in_skull_y=float(rng.normal(0.0, 0.1)),
                    valid=valid,
                )
            )

        behavior = GazeBehavior(
            behavior_type=str(rng.choice(GAZE_BEHAVIORS)),
            amplitude=float(abs(rng.normal(2.0, 1.0))),
            direction=float(rng.uniform(0.0, 360.0)),
            velocity=float(abs(rng.normal(30.0, 10.0))),
            onset_time=int(time.monotonic_ns() // 1000),
            duration=float(abs(rng.normal(0.2, 0.05))),
        )
        return EyeFrame(
            pupils=pupils,
            geometrics=geometrics,
            gaze_behavior=behavior,
            static=StaticEyeData(eye_width_max=0.031, eye_height_max=0.012),
            vergence=_vector(rng.normal(0.0, 0.5, 3)),
            fixation_confidence=float(rng.uniform(0.5, 1.0)),
            left_blink=bool(rng.random() < 0.02),
            right_blink=bool(rng.random() < 0.02),
            left_center_confidence=float(rng.uniform(0.5, 1.0)),
            right_center_confidence=float(rng.uniform(0.5, 1.0)),
            gaze_position=_vector(rng.normal(0.0, 0.05, 3)),
            gaze_rotation=Quaternion(0.0, 0.0, 0.0, 1.0),
        )


class SyntheticExpressionProvider:
    def __init__(
        self,
        channel_names: Sequence[str] = DEFAULT_EXPRESSION_CHANNELS,
        seed: Optional[int] = None,
        *,
        untracked_probability: float = 0.0,
    ) -> None:
        self._channel_names = tuple(channel_names)
        self._rng = np.random.default_rng(seed)
        self.untracked_probability = untracked_probability

    @property
    def channel_names(self) -> Sequence[str]:
        return self._channel_names

    def read_weights(self) -> list[Optional[float]]:
        weights = self._rng.uniform(0.0, 1.0, len(self._channel_names))
        if self.untracked_probability:
            mask = self._rng.random(len(self._channel_names)) < self.untracked_probability
        else:
            mask = np.zeros(len(self._channel_names), dtype=bool)
        return [None if untracked else float(weight) for weight, untracked in zip(weights, mask)]


class SyntheticMotionProvider:
    """Slow head sway plus gravity, with gaussian sensor noise."""

    def __init__(
        self,
        seed: Optional[int] = None,
        *,
        noise: float = 0.01,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rng = np.random.default_rng(seed)
        self.noise = noise
        self._clock = clock
        self._origin = clock()

    def read(self) -> MotionReading:
        t = self._clock() - self._origin
        sway = np.array([np.sin(t * 0.5), np.cos(t * 0.3), np.sin(t * 0.2)], dtype=np.float64)
        noise = self._rng.normal(0.0, self.noise, (3, 3))
        linear = sway * 0.1 + noise[0]
        return MotionReading(
            acceleration=_vector(linear + np.array([0.0, -9.81, 0.0])),
            angular_velocity=_vector(sway * 0.05 + noise[1]),
            linear_acceleration=_vector(linear),
            attitude=_vector(np.degrees(sway * 0.1) + noise[2]),
        )


class SyntheticPoseProvider:
    def __init__(self, seed: Optional[int] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._rng = np.random.default_rng(seed)
        self._clock = clock
        self._origin = clock()

    def read(self) -> HeadPose:
        t = self._clock() - self._origin
        yaw = float(np.degrees(np.sin(t * 0.25) * 0.3))
        position = np.array([0.0, 1.6, 0.0]) + self._rng.normal(0.0, 0.002, 3)
        forward = np.array([np.sin(np.radians(yaw)), 0.0, np.cos(np.radians(yaw))])
        return HeadPose(
            position=_vector(position),
            rotation=Vector3(0.0, yaw, 0.0),
            forward=_vector(forward),
        )


class SyntheticLightProvider:
    def __init__(self, seed: Optional[int] = None, *, base_lux: float = 320.0) -> None:
        self._rng = np.random.default_rng(seed)
        self.base_lux = base_lux

    def read_lux(self) -> Optional[float]:
        return float(max(0.0, self._rng.normal(self.base_lux, self.base_lux * 0.05)))


class SyntheticAudioInput:
    """Generated microphone: a quiet tone under noise, streamed into a ring buffer.

    ``start`` runs a generator thread in real time; tests call ``pump``
    directly instead.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        *,
        sample_rate: int = 16000,
        channels: int = 1,
        buffer_seconds: float = 60.0,
        amplitude: float = 0.05,
        block_seconds: float = 0.05,
    ) -> None:
        self._rng = np.random.default_rng(seed)
        self._sample_rate = int(sample_rate)
        self._channels = int(channels)
        self._ring = AudioRingBuffer(capacity=int(sample_rate * buffer_seconds), channels=self._channels)
        self.amplitude = amplitude
        self.block_seconds = block_seconds
        self._phase = 0
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def ring_buffer(self) -> AudioRingBuffer:
        return self._ring

    def pump(self, frames: int) -> np.ndarray:
        """Generate ``frames`` frames into the ring buffer and return them."""
        index = np.arange(self._phase, self._phase + frames)
        self._phase += frames
        tone = self.amplitude * np.sin(2.0 * np.pi * 440.0 * index / self._sample_rate)
        noise = self._rng.normal(0.0, self.amplitude * 0.1, frames)
        block = np.clip(tone + noise, -1.0, 1.0).astype(np.float32)
        block = np.repeat(block.reshape(-1, 1), self._channels, axis=1)
        self._ring.write(block)
        return block

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._generate_loop, name="SyntheticAudio", daemon=True)
        self._thread.start()
        logger.debug("Synthetic audio input started (%d Hz)", self._sample_rate)

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout=2.0)
        self._thread = None

    def begin_segment(self, seconds: float) -> RingBufferSegment:
        return RingBufferSegment(self._ring, self._sample_rate, seconds)

    def _generate_loop(self) -> None:
        frames = max(1, int(self._sample_rate * self.block_seconds))
        while not self._stop_event.wait(self.block_seconds):
            self.pump(frames)


class SyntheticCamera:
    """Camera that delivers generated JPEG frames through the image callback."""

    def __init__(
        self,
        seed: Optional[int] = None,
        *,
        width: int = 320,
        height: int = 240,
        settle_probability: float = 1.0,
        frame_factory: Optional[Callable[[], bytes]] = None,
    ) -> None:
        self._rng = np.random.default_rng(seed)
        self.width = width
        self.height = height
        self.settle_probability = settle_probability
        self._frame_factory = frame_factory or self._encode_frame
        self._callback: Optional[ImageCallback] = None
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def set_image_callback(self, callback: Optional[ImageCallback]) -> None:
        self._callback = callback

    async def precapture_ae_awb(self) -> bool:
        await asyncio.sleep(0)
        return self._connected

    async def capture_image(self) -> bool:
        if not self._connected:
            return False
        data = await asyncio.to_thread(self._frame_factory)
        settled = self._rng.random() < self.settle_probability
        state = ConvergenceState.CONVERGED if settled else ConvergenceState.SEARCHING
        image = CapturedImage(data=data, image_format=ImageFormat.JPEG, ae_state=state, awb_state=state)
        callback = self._callback
        if callback is not None:
            callback(image)
        return True

    def close(self) -> None:
        self._connected = False
        self._callback = None

    def _encode_frame(self) -> bytes:
        import cv2

        frame = self._rng.integers(0, 255, (self.height, self.width, 3), dtype=np.uint8)
        ok, encoded = cv2.imencode(".jpg", frame)
        if not ok:
            raise RuntimeError("JPEG encoding failed")
        return encoded.tobytes()


__all__ = [
    "DEFAULT_EXPRESSION_CHANNELS",
    "SyntheticAudioInput",
    "SyntheticCamera",
    "SyntheticExpressionProvider",
    "SyntheticEyeTracker",
    "SyntheticLightProvider",
    "SyntheticMotionProvider",
    "SyntheticPoseProvider",
]
