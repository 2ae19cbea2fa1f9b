"""Background capture producers: still frames and back-to-back audio segments.

Encoding and file writes run on a worker executor. Workers report back only
through the dispatcher; the actions they enqueue run on the serialization
thread on the next tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import wave
from concurrent.futures import Executor
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from ..core.dispatcher import CrossThreadDispatcher
from ..core.errors import BackgroundSaveError
from ..core.logging_utils import get_module_logger
from ..providers.base import AudioClip, AudioInputProvider, CameraProvider, CapturedImage, ImageFormat

AUDIO_BIT_DEPTH = 16
SEGMENT_RETRY_DELAY = 1.0

EventSink = Callable[[str, str], None]
ErrorSink = Callable[[BackgroundSaveError], None]


def frame_filename(moment: datetime) -> str:
    return f"frame_{moment.strftime('%Y%m%d_%H_%M_%S')}_{moment.microsecond // 100:04d}.jpg"


def audio_filename(moment: datetime, sequence: int) -> str:
    return f"audio_{moment.strftime('%Y%m%d_%H_%M_%S')}_{sequence:04d}.wav"


def to_pcm_bytes(samples: np.ndarray) -> bytes:
    """Interleaved little-endian int16 PCM from float samples in [-1, 1]."""
    array = np.asarray(samples, dtype=np.float32)
    scaled = np.clip(array, -1.0, 1.0)
    max_int = (2 ** (AUDIO_BIT_DEPTH - 1)) - 1
    return (scaled * max_int).astype("<i2").tobytes()


def write_wav(clip: AudioClip, path: Path) -> Path:
    """Write ``clip`` as a 16-bit PCM RIFF/WAVE file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with contextlib.closing(wave.open(str(path), "wb")) as wave_handle:
        wave_handle.setnchannels(clip.channels)
        wave_handle.setsampwidth(AUDIO_BIT_DEPTH // 8)
        wave_handle.setframerate(clip.sample_rate)
        wave_handle.writeframes(to_pcm_bytes(clip.samples))
    return path


class FrameCapture:
    """Single-shot still capture with settled-exposure filtering."""

    def __init__(
        self,
        camera: CameraProvider,
        *,
        output_dir: Path,
        dispatcher: CrossThreadDispatcher,
        executor: Executor,
        on_event: EventSink,
        on_error: ErrorSink,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.camera = camera
        self.output_dir = Path(output_dir)
        self.dispatcher = dispatcher
        self.executor = executor
        self.on_event = on_event
        self.on_error = on_error
        self._now = now
        self._in_flight = False
        self.logger = get_module_logger("FrameCapture")

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def attach(self) -> None:
        self.camera.set_image_callback(self.handle_image)

    def detach(self) -> None:
        self.camera.set_image_callback(None)

    async def capture_once(self) -> bool:
        """Pre-capture AE/AWB then take one still; returns whether a shot was taken."""
        if self._in_flight:
            return False
        self._in_flight = True
        try:
            if not await self.camera.precapture_ae_awb():
                self.logger.warning("Pre-capture AE/AWB failed")
                return False
            if not await self.camera.capture_image():
                self.logger.error("Image capture failed")
                return False
            return True
        finally:
            self._in_flight = False

    def handle_image(self, image: CapturedImage) -> None:
        """Camera callback: keep settled JPEG frames and save them off-thread."""
        if not image.exposure_settled:
            self.logger.debug("Discarding frame captured before AE/AWB settled")
            return
        if image.image_format is not ImageFormat.JPEG:
            self.logger.debug("Discarding %s frame", image.image_format.value)
            return

        filename = frame_filename(self._now())
        path = self.output_dir / filename
        self.executor.submit(self._save_frame, path, image.data)

    def _save_frame(self, path: Path, data: bytes) -> None:
        filename = path.name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except Exception as exc:
            error = BackgroundSaveError(filename, exc)
            self.dispatcher.enqueue(lambda: self.on_error(error))
            return
        self.dispatcher.enqueue(lambda: self.on_event("VIDEO_FRAME_CAPTURED", filename))


class AudioSegmentRecorder:
    """Records consecutive fixed-length segments while ``active`` holds."""

    def __init__(
        self,
        audio: AudioInputProvider,
        *,
        output_dir: Path,
        segment_length: float,
        dispatcher: CrossThreadDispatcher,
        executor: Executor,
        on_event: EventSink,
        on_error: ErrorSink,
        active: Callable[[], bool],
        now: Callable[[], datetime] = datetime.now,
        retry_delay: float = SEGMENT_RETRY_DELAY,
    ) -> None:
        self.audio = audio
        self.output_dir = Path(output_dir)
        self.segment_length = float(segment_length)
        self.dispatcher = dispatcher
        self.executor = executor
        self.on_event = on_event
        self.on_error = on_error
        self._active = active
        self._now = now
        self.retry_delay = retry_delay
        self._sequence = 0
        self._current_file: Optional[str] = None
        self.logger = get_module_logger("AudioSegments")

    @property
    def current_file(self) -> Optional[str]:
        return self._current_file

    @property
    def segments_started(self) -> int:
        return self._sequence

    def reset(self) -> None:
        self._sequence = 0
        self._current_file = None

    async def run(self) -> None:
        while self._active():
            try:
                started = await self.record_segment()
            finally:
                self._current_file = None
            if not started:
                await asyncio.sleep(self.retry_delay)

    async def record_segment(self) -> bool:
        filename = audio_filename(self._now(), self._sequence)
        self._sequence += 1
        self._current_file = filename

        try:
            segment = self.audio.begin_segment(self.segment_length)
        except Exception as exc:
            self.logger.error("Error recording audio segment %s: %s", filename, exc)
            self._current_file = None
            return False

        self.on_event("AUDIO_RECORDING_START", filename)
        try:
            await asyncio.sleep(self.segment_length)
        except asyncio.CancelledError:
            segment.cancel()
            raise

        try:
            clip = segment.finish()
        except Exception as exc:
            self.logger.error("No audio clip to save for %s: %s", filename, exc)
        else:
            self.executor.submit(self._save_clip, clip, self.output_dir / filename)

        self.on_event("AUDIO_RECORDING_END", filename)
        self._current_file = None
        return True

    def _save_clip(self, clip: AudioClip, path: Path) -> None:
        filename = path.name
        try:
            write_wav(clip, path)
        except Exception as exc:
            error = BackgroundSaveError(filename, exc)
            self.dispatcher.enqueue(lambda: self.on_error(error))
            return
        self.dispatcher.enqueue(lambda: self.on_event("AUDIO_FILE_SAVED", filename))


__all__ = [
    "AudioSegmentRecorder",
    "FrameCapture",
    "audio_filename",
    "frame_filename",
    "to_pcm_bytes",
    "write_wav",
]
