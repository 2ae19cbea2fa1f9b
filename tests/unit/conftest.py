"""Unit test fixtures for isolated, fast test execution.

These fixtures replace every time source, worker pool and hardware
collaborator with deterministic stand-ins:
- ``manual_clock`` / ``fake_now`` drive monotonic and wall-clock time
- ``inline_executor`` runs background saves synchronously
- ``FakeCamera`` / ``FakeAudioInput`` stand in for capture hardware
- ``patch_sounddevice`` / ``patch_cv2`` mock the hardware libraries
"""

from __future__ import annotations

import sys
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from sensorsuite.collection.scheduler import SamplingScheduler
from sensorsuite.config.settings import SuiteSettings
from sensorsuite.core.buffered_log import BufferedLog, FlushPolicy
from sensorsuite.core.dispatcher import CrossThreadDispatcher
from sensorsuite.providers.base import (
    AudioClip,
    AudioRingBuffer,
    CapturedImage,
    ConvergenceState,
    EyeFrame,
    GeometricSample,
    ImageFormat,
    PupilSample,
)
from sensorsuite.providers.sensor_access import SensorAccess


# =============================================================================
# Time and execution stand-ins
# =============================================================================

class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> float:
        self.value += seconds
        return self.value


class FakeNow:
    """Wall clock starting at a fixed moment, one millisecond per call."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(milliseconds=1)):
        self.current = start or datetime(2024, 5, 1, 12, 0, 0)
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


class InlineExecutor(Executor):
    """Executor that runs submitted work on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


# =============================================================================
# Collaborator stand-ins
# =============================================================================

class FakeCamera:
    """Camera returning a fixed JPEG payload through the image callback."""

    def __init__(
        self,
        payload: bytes = b"\xff\xd8fake-jpeg\xff\xd9",
        *,
        state: ConvergenceState = ConvergenceState.CONVERGED,
        image_format: ImageFormat = ImageFormat.JPEG,
        precapture_ok: bool = True,
    ):
        self.payload = payload
        self.state = state
        self.image_format = image_format
        self.precapture_ok = precapture_ok
        self.connected = True
        self.callback = None
        self.captures = 0
        self.closed = False

    def set_image_callback(self, callback):
        self.callback = callback

    async def precapture_ae_awb(self) -> bool:
        return self.precapture_ok

    async def capture_image(self) -> bool:
        self.captures += 1
        if self.callback is not None:
            self.callback(
                CapturedImage(
                    data=self.payload,
                    image_format=self.image_format,
                    ae_state=self.state,
                    awb_state=self.state,
                )
            )
        return True

    def close(self):
        self.closed = True
        self.connected = False


class FixedSegment:
    """Audio segment that always yields the same clip."""

    def __init__(self, clip: AudioClip):
        self.clip = clip
        self.cancelled = False
        self.finished = False

    def finish(self) -> AudioClip:
        self.finished = True
        return self.clip

    def cancel(self):
        self.cancelled = True


class FakeAudioInput:
    """Audio input with a real ring buffer and scripted segment failures."""

    def __init__(self, *, sample_rate: int = 16000, channels: int = 1, failures: int = 0):
        self.sample_rate = sample_rate
        self.channels = channels
        self.ring_buffer = AudioRingBuffer(capacity=sample_rate * 2, channels=channels)
        self.failures = failures
        self.segments: list[FixedSegment] = []
        self.started = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def begin_segment(self, seconds: float) -> FixedSegment:
        if self.failures:
            self.failures -= 1
            raise RuntimeError("microphone busy")
        frames = max(1, int(seconds * self.sample_rate))
        samples = np.full((frames, self.channels), 0.25, dtype=np.float32)
        segment = FixedSegment(AudioClip(samples=samples, sample_rate=self.sample_rate, channels=self.channels))
        self.segments.append(segment)
        return segment


class SingleEyeTracker:
    """Eye tracker reporting one valid left-eye pair per frame."""

    def __init__(self, frame: Optional[EyeFrame] = None):
        self.frame = frame or EyeFrame(
            pupils=[PupilSample(eye="Left", diameter=0.0035)],
            geometrics=[GeometricSample(eye="Left", openness=0.9, eye_in_skull_x=0.1, eye_in_skull_y=-0.1)],
        )
        self.reads = 0

    def read_frame(self) -> Optional[EyeFrame]:
        self.reads += 1
        return self.frame


class ConstantLight:
    def __init__(self, lux: Optional[float] = 250.5):
        self.lux = lux

    def read_lux(self) -> Optional[float]:
        return self.lux


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fake_now() -> FakeNow:
    return FakeNow()


@pytest.fixture
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def dispatcher() -> CrossThreadDispatcher:
    return CrossThreadDispatcher()


@pytest.fixture
def sensor_access() -> SensorAccess:
    return SensorAccess.all_granted()


@pytest.fixture
def fake_camera() -> FakeCamera:
    return FakeCamera()


@pytest.fixture
def fake_audio() -> FakeAudioInput:
    return FakeAudioInput()


@pytest.fixture
def eye_tracker() -> SingleEyeTracker:
    return SingleEyeTracker()


@pytest.fixture
def constant_light() -> ConstantLight:
    return ConstantLight()


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    """Per-test output root for SensorData, VideoFrames and AudioRecordings."""
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def make_log(data_root: Path, manual_clock: ManualClock, fake_now: FakeNow) -> Callable[..., BufferedLog]:
    """
    Factory fixture for BufferedLog instances on the manual clock.

    Example:
        def test_flushes(make_log):
            log = make_log(flush_interval=2)
    """

    def factory(output_dir: Optional[Path] = None, **policy) -> BufferedLog:
        return BufferedLog(
            output_dir or data_root,
            FlushPolicy(**policy),
            clock=manual_clock,
            now=fake_now,
        )

    return factory


@pytest.fixture
def make_settings(data_root: Path) -> Callable[..., SuiteSettings]:
    """
    Factory fixture for settings with every category switched off.

    Tests opt in to the categories they exercise.
    """

    def factory(**overrides) -> SuiteSettings:
        values = dict(
            output_dir=data_root,
            collect_eye_tracking=False,
            collect_imu=False,
            collect_facial=False,
            collect_light=False,
            collect_camera_pose=False,
            collect_audio=False,
            collect_video=False,
            record_audio_files=False,
        )
        values.update(overrides)
        return SuiteSettings(**values).validate()

    return factory


@pytest.fixture
def make_scheduler(
    make_settings,
    manual_clock: ManualClock,
    fake_now: FakeNow,
    dispatcher: CrossThreadDispatcher,
    sensor_access: SensorAccess,
    inline_executor: InlineExecutor,
) -> Callable[..., SamplingScheduler]:
    """
    Factory fixture wiring a scheduler to fakes.

    Keyword arguments naming a collaborator (``eye``, ``motion``, ``light``,
    ...) are passed through; everything else overrides a setting.
    """
    collaborators = {"eye", "motion", "pose", "light", "expression", "audio", "camera", "log"}

    def factory(**kwargs) -> SamplingScheduler:
        providers = {key: kwargs.pop(key) for key in list(kwargs) if key in collaborators}
        settings = make_settings(**kwargs)
        log = providers.pop("log", None) or BufferedLog(
            settings.output_dir,
            FlushPolicy(
                buffer_size=settings.buffer_size,
                flush_interval=settings.flush_interval,
                auto_flush_time=settings.auto_flush_time,
            ),
            clock=manual_clock,
            now=fake_now,
        )
        return SamplingScheduler(
            settings,
            log=log,
            dispatcher=dispatcher,
            sensor_access=sensor_access,
            executor=inline_executor,
            clock=manual_clock,
            now=fake_now,
            **providers,
        )

    return factory


# =============================================================================
# Hardware library mocks
# =============================================================================

@pytest.fixture
def patch_sounddevice():
    """
    Patch sounddevice module for audio tests.

    Yields:
        MagicMock of sounddevice module
    """
    mock_sd = MagicMock()
    mock_sd.PortAudioError = type("PortAudioError", (Exception,), {})
    mock_sd.query_devices.return_value = {
        "name": "Mock Microphone",
        "default_samplerate": 48000.0,
        "max_input_channels": 2,
    }
    with patch.dict(sys.modules, {"sounddevice": mock_sd}):
        sys.modules.pop("sensorsuite.providers.sounddevice_audio", None)
        yield mock_sd


@pytest.fixture
def patch_cv2():
    """
    Patch cv2 module for camera tests.

    Yields:
        MagicMock of cv2 module
    """
    mock_cv2 = MagicMock()
    capture = mock_cv2.VideoCapture.return_value
    capture.isOpened.return_value = True
    capture.grab.return_value = True
    capture.get.return_value = 640.0
    capture.read.return_value = (True, np.zeros((4, 4, 3), dtype=np.uint8))
    mock_cv2.imencode.return_value = (True, np.frombuffer(b"\xff\xd8jpeg\xff\xd9", dtype=np.uint8))
    with patch.dict(sys.modules, {"cv2": mock_cv2}):
        sys.modules.pop("sensorsuite.providers.opencv_camera", None)
        yield mock_cv2
