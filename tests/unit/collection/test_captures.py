"""Unit tests for frame capture and audio segment recording."""

import asyncio
import wave
from datetime import datetime

import numpy as np
import pytest

from sensorsuite.collection import captures as captures_module
from sensorsuite.collection.captures import (
    AudioSegmentRecorder,
    FrameCapture,
    audio_filename,
    frame_filename,
    to_pcm_bytes,
    write_wav,
)
from sensorsuite.core.errors import BackgroundSaveError
from sensorsuite.providers.base import AudioClip, CapturedImage, ConvergenceState, ImageFormat


class Recorder:
    """Collects event and error callbacks."""

    def __init__(self):
        self.events = []
        self.errors = []

    def on_event(self, name, value=""):
        self.events.append((name, value))

    def on_error(self, error):
        self.errors.append(error)


def countdown(n):
    """``active`` callback that holds for ``n`` checks."""
    remaining = [n]

    def active():
        remaining[0] -= 1
        return remaining[0] >= 0

    return active


# =============================================================================
# Filenames and WAV encoding
# =============================================================================

class TestFilenames:
    def test_frame_filename(self):
        moment = datetime(2024, 5, 1, 12, 3, 4, 567890)
        assert frame_filename(moment) == "frame_20240501_12_03_04_5678.jpg"

    def test_audio_filename(self):
        moment = datetime(2024, 5, 1, 12, 3, 4)
        assert audio_filename(moment, 3) == "audio_20240501_12_03_04_0003.wav"


class TestWavEncoding:
    def test_pcm_scaling_and_clipping(self):
        pcm = np.frombuffer(to_pcm_bytes(np.array([0.0, 1.0, -1.0, 2.0])), dtype="<i2")
        assert pcm.tolist() == [0, 32767, -32767, 32767]

    def test_write_wav_header(self, tmp_path):
        samples = np.full((1600, 2), 0.5, dtype=np.float32)
        clip = AudioClip(samples=samples, sample_rate=16000, channels=2)
        path = write_wav(clip, tmp_path / "nested" / "clip.wav")

        with wave.open(str(path), "rb") as handle:
            assert handle.getnchannels() == 2
            assert handle.getsampwidth() == 2
            assert handle.getframerate() == 16000
            assert handle.getnframes() == 1600
        assert path.read_bytes()[:4] == b"RIFF"

    def test_clip_duration(self):
        clip = AudioClip(samples=np.zeros((8000, 1), dtype=np.float32), sample_rate=16000, channels=1)
        assert clip.frames == 8000
        assert clip.duration == pytest.approx(0.5)


# =============================================================================
# Frame Capture
# =============================================================================

class TestFrameCapture:
    """Tests for settled-frame filtering and off-thread saves."""

    @pytest.fixture
    def recorder(self):
        return Recorder()

    @pytest.fixture
    def capture(self, fake_camera, tmp_path, dispatcher, inline_executor, recorder, fake_now):
        capture = FrameCapture(
            fake_camera,
            output_dir=tmp_path / "VideoFrames",
            dispatcher=dispatcher,
            executor=inline_executor,
            on_event=recorder.on_event,
            on_error=recorder.on_error,
            now=fake_now,
        )
        capture.attach()
        return capture

    @pytest.mark.asyncio
    async def test_settled_frame_is_saved_and_reported(self, capture, fake_camera, dispatcher, recorder, tmp_path):
        assert await capture.capture_once() is True

        saved = list((tmp_path / "VideoFrames").iterdir())
        assert len(saved) == 1
        assert saved[0].read_bytes() == fake_camera.payload
        assert recorder.events == []

        dispatcher.drain()
        assert recorder.events == [("VIDEO_FRAME_CAPTURED", saved[0].name)]
        assert saved[0].name == "frame_20240501_12_00_00_0000.jpg"

    def test_unsettled_frame_is_discarded(self, capture, inline_executor):
        image = CapturedImage(b"x", ImageFormat.JPEG, ConvergenceState.SEARCHING, ConvergenceState.CONVERGED)
        capture.handle_image(image)
        assert inline_executor.submitted == 0

    def test_missing_convergence_state_is_discarded(self, capture, inline_executor):
        capture.handle_image(CapturedImage(b"x", ImageFormat.JPEG, None, None))
        assert inline_executor.submitted == 0

    def test_locked_state_counts_as_settled(self, capture, inline_executor):
        capture.handle_image(CapturedImage(b"x", ImageFormat.JPEG, ConvergenceState.LOCKED, ConvergenceState.LOCKED))
        assert inline_executor.submitted == 1

    def test_non_jpeg_frame_is_discarded(self, capture, inline_executor):
        image = CapturedImage(b"x", ImageFormat.YUV_420_888, ConvergenceState.CONVERGED, ConvergenceState.CONVERGED)
        capture.handle_image(image)
        assert inline_executor.submitted == 0

    @pytest.mark.asyncio
    async def test_precapture_failure_skips_capture(self, capture, fake_camera):
        fake_camera.precapture_ok = False
        assert await capture.capture_once() is False
        assert fake_camera.captures == 0
        assert not capture.in_flight

    def test_save_failure_reported_through_dispatcher(self, fake_camera, tmp_path, dispatcher, inline_executor, recorder):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not directory")
        capture = FrameCapture(
            fake_camera,
            output_dir=blocker / "VideoFrames",
            dispatcher=dispatcher,
            executor=inline_executor,
            on_event=recorder.on_event,
            on_error=recorder.on_error,
        )
        capture.handle_image(
            CapturedImage(b"x", ImageFormat.JPEG, ConvergenceState.CONVERGED, ConvergenceState.CONVERGED)
        )
        assert recorder.errors == []

        dispatcher.drain()
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], BackgroundSaveError)
        assert recorder.events == []

    def test_unexpected_save_error_reported(self, capture, dispatcher, recorder):
        capture.handle_image(
            CapturedImage(None, ImageFormat.JPEG, ConvergenceState.CONVERGED, ConvergenceState.CONVERGED)
        )

        dispatcher.drain()
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0].cause, TypeError)
        assert recorder.events == []

    def test_detach_clears_callback(self, capture, fake_camera):
        assert fake_camera.callback == capture.handle_image
        capture.detach()
        assert fake_camera.callback is None


# =============================================================================
# Audio Segment Recording
# =============================================================================

class TestAudioSegmentRecorder:
    """Tests for back-to-back segment recording."""

    def make_recorder(self, audio, tmp_path, dispatcher, executor, recorder, fake_now, active, **kwargs):
        return AudioSegmentRecorder(
            audio,
            output_dir=tmp_path / "AudioRecordings",
            segment_length=kwargs.pop("segment_length", 0.01),
            dispatcher=dispatcher,
            executor=executor,
            on_event=recorder.on_event,
            on_error=recorder.on_error,
            active=active,
            now=fake_now,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_records_consecutive_segments(self, fake_audio, tmp_path, dispatcher, inline_executor, fake_now):
        recorder = Recorder()
        segments = self.make_recorder(
            fake_audio, tmp_path, dispatcher, inline_executor, recorder, fake_now, countdown(2)
        )
        await segments.run()

        names = [value for name, value in recorder.events if name == "AUDIO_RECORDING_START"]
        assert len(names) == 2
        assert names[0].endswith("_0000.wav")
        assert names[1].endswith("_0001.wav")
        assert [name for name, _ in recorder.events] == [
            "AUDIO_RECORDING_START",
            "AUDIO_RECORDING_END",
            "AUDIO_RECORDING_START",
            "AUDIO_RECORDING_END",
        ]
        assert segments.current_file is None
        assert segments.segments_started == 2

        dispatcher.drain()
        saved = [value for name, value in recorder.events if name == "AUDIO_FILE_SAVED"]
        assert saved == names
        with wave.open(str(tmp_path / "AudioRecordings" / names[0]), "rb") as handle:
            assert handle.getnchannels() == 1
            assert handle.getframerate() == 16000
            assert handle.getnframes() == 160

    @pytest.mark.asyncio
    async def test_current_file_set_while_recording(self, fake_audio, tmp_path, dispatcher, inline_executor, fake_now):
        recorder = Recorder()
        segments = self.make_recorder(
            fake_audio, tmp_path, dispatcher, inline_executor, recorder, fake_now, countdown(1),
            segment_length=0.2,
        )
        task = asyncio.create_task(segments.run())
        await asyncio.sleep(0.05)

        assert segments.current_file == recorder.events[0][1]
        await task
        assert segments.current_file is None

    @pytest.mark.asyncio
    async def test_failed_start_retries(self, fake_audio, tmp_path, dispatcher, inline_executor, fake_now, caplog):
        fake_audio.failures = 1
        recorder = Recorder()
        segments = self.make_recorder(
            fake_audio, tmp_path, dispatcher, inline_executor, recorder, fake_now, countdown(2),
            retry_delay=0.0,
        )
        await segments.run()

        starts = [value for name, value in recorder.events if name == "AUDIO_RECORDING_START"]
        assert len(starts) == 1
        assert starts[0].endswith("_0001.wav")
        assert "Error recording audio segment" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_encode_error_reported(
        self, fake_audio, tmp_path, dispatcher, inline_executor, fake_now, monkeypatch
    ):
        def broken_encoder(clip, path):
            raise RuntimeError("encoder crashed")

        monkeypatch.setattr(captures_module, "write_wav", broken_encoder)
        recorder = Recorder()
        segments = self.make_recorder(
            fake_audio, tmp_path, dispatcher, inline_executor, recorder, fake_now, countdown(1)
        )
        await segments.run()

        dispatcher.drain()
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], BackgroundSaveError)
        assert isinstance(recorder.errors[0].cause, RuntimeError)
        assert "AUDIO_FILE_SAVED" not in [name for name, _ in recorder.events]

    @pytest.mark.asyncio
    async def test_cancel_mid_segment(self, fake_audio, tmp_path, dispatcher, inline_executor, fake_now):
        recorder = Recorder()
        segments = self.make_recorder(
            fake_audio, tmp_path, dispatcher, inline_executor, recorder, fake_now, lambda: True,
            segment_length=10.0,
        )
        task = asyncio.create_task(segments.run())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert fake_audio.segments[0].cancelled
        assert not fake_audio.segments[0].finished
        assert [name for name, _ in recorder.events] == ["AUDIO_RECORDING_START"]
        assert segments.current_file is None
        assert inline_executor.submitted == 0
