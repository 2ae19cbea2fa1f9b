"""Application object that owns the log, dispatcher, scheduler and providers."""

from __future__ import annotations

import asyncio
import atexit
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..collection.scheduler import SamplingScheduler
from ..config.settings import SuiteSettings
from ..core.buffered_log import BufferedLog, FlushPolicy
from ..core.dispatcher import CrossThreadDispatcher
from ..core.errors import SensorUnavailable
from ..core.logging_utils import get_module_logger
from ..core.paths import ensure_directories
from ..core.shutdown import ShutdownCoordinator
from ..core.task_manager import AsyncTaskManager
from ..providers.base import (
    AudioInputProvider,
    CameraProvider,
    ExpressionProvider,
    EyeTrackingProvider,
    LightProvider,
    MotionProvider,
    PoseProvider,
)
from ..providers.sensor_access import Capability, PERMISSIONS, SensorAccess
from ..providers.synthetic import (
    SyntheticAudioInput,
    SyntheticCamera,
    SyntheticExpressionProvider,
    SyntheticEyeTracker,
    SyntheticLightProvider,
    SyntheticMotionProvider,
    SyntheticPoseProvider,
)

logger = get_module_logger("SensorSuiteApp")

AUDIO_RING_SECONDS = 60.0
AUDIO_RING_MARGIN = 5.0


@dataclass(slots=True)
class ProviderSet:
    sensor_access: SensorAccess
    eye: Optional[EyeTrackingProvider] = None
    motion: Optional[MotionProvider] = None
    pose: Optional[PoseProvider] = None
    light: Optional[LightProvider] = None
    expression: Optional[ExpressionProvider] = None
    audio: Optional[AudioInputProvider] = None
    camera: Optional[CameraProvider] = None


def ring_buffer_seconds(settings: SuiteSettings) -> float:
    """Ring length in seconds; a whole audio segment must fit with room to spare."""
    return max(AUDIO_RING_SECONDS, settings.audio_segment_length + AUDIO_RING_MARGIN)


def _build_audio(settings: SuiteSettings) -> Optional[AudioInputProvider]:
    buffer_seconds = ring_buffer_seconds(settings)
    if settings.audio_backend == "sounddevice":
        from ..providers.sounddevice_audio import SoundDeviceAudioInput

        try:
            return SoundDeviceAudioInput(buffer_seconds=buffer_seconds)
        except SensorUnavailable as exc:
            logger.warning("Microphone unavailable: %s", exc)
            return None
    return SyntheticAudioInput(seed=settings.seed, buffer_seconds=buffer_seconds)


def _build_camera(settings: SuiteSettings) -> Optional[CameraProvider]:
    if settings.camera_backend == "none":
        return None
    if settings.camera_backend == "opencv":
        from ..providers.opencv_camera import OpenCVCamera

        try:
            return OpenCVCamera()
        except SensorUnavailable as exc:
            logger.warning("Camera unavailable: %s", exc)
            return None
    return SyntheticCamera(seed=settings.seed)


def build_providers(settings: SuiteSettings) -> ProviderSet:
    """Wire the collaborators selected by the backend settings.

    Eye, motion, pose, light and expression sources are always synthetic;
    audio and camera may be backed by real devices.
    """
    seed = settings.seed
    audio = _build_audio(settings)
    camera = _build_camera(settings)

    flags = {permission: True for permission in PERMISSIONS}
    flags.update(
        {
            Capability.EYE_TRACKER: True,
            Capability.FACIAL_EXPRESSION: True,
            Capability.LIGHT_SENSOR: True,
            Capability.ACCELEROMETER: True,
            Capability.GYROSCOPE: True,
            Capability.LINEAR_ACCELERATION: True,
            Capability.ATTITUDE_SENSOR: True,
            Capability.AUDIO_INPUT: audio is not None,
            Capability.CAMERA: camera is not None,
        }
    )
    return ProviderSet(
        sensor_access=SensorAccess(flags),
        eye=SyntheticEyeTracker(seed=seed),
        motion=SyntheticMotionProvider(seed=seed),
        pose=SyntheticPoseProvider(seed=seed),
        light=SyntheticLightProvider(seed=seed),
        expression=SyntheticExpressionProvider(seed=seed),
        audio=audio,
        camera=camera,
    )


class SensorSuiteApp:
    """Runs one collection session on the current event loop."""

    def __init__(
        self,
        settings: SuiteSettings,
        *,
        providers: Optional[ProviderSet] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.providers = providers or build_providers(settings)
        self.dispatcher = CrossThreadDispatcher()
        self.log = BufferedLog(
            settings.output_dir,
            FlushPolicy(
                buffer_size=settings.buffer_size,
                flush_interval=settings.flush_interval,
                auto_flush_time=settings.auto_flush_time,
            ),
            clock=clock,
        )
        self.scheduler = SamplingScheduler(
            settings,
            log=self.log,
            dispatcher=self.dispatcher,
            sensor_access=self.providers.sensor_access,
            eye=self.providers.eye,
            motion=self.providers.motion,
            pose=self.providers.pose,
            light=self.providers.light,
            expression=self.providers.expression,
            audio=self.providers.audio,
            camera=self.providers.camera,
            clock=clock,
        )
        self.shutdown = ShutdownCoordinator()
        self.shutdown.register_cleanup(self._stop_collection)
        self.shutdown.register_cleanup(self._release_devices)
        self._tasks = AsyncTaskManager("SensorSuiteApp", logger)
        self._atexit_registered = False

    # ------------------------------------------------------------------
    # Lifecycle

    async def run(self) -> None:
        """Collect until ``duration`` elapses or shutdown is requested."""
        settings = self.settings
        ensure_directories(settings.output_dir)
        self._register_atexit()

        audio = self.providers.audio
        if audio is not None:
            try:
                await asyncio.to_thread(audio.start)
            except SensorUnavailable as exc:
                logger.warning("Audio input failed to start: %s", exc)
                self.providers.sensor_access.set_capability(Capability.AUDIO_INPUT, False)

        try:
            await self.scheduler.start_collection(settings.subject_id)
            self._tasks.create(self.scheduler.run(), name="tick_loop")
            self._tasks.create(self._status_loop(), name="status_loop")

            if settings.duration > 0:
                try:
                    await asyncio.wait_for(self.shutdown.wait_for_request(), timeout=settings.duration)
                except asyncio.TimeoutError:
                    logger.info("Collection duration of %.1fs elapsed", settings.duration)
            else:
                await self.shutdown.wait_for_request()
        finally:
            await self.shutdown.initiate_shutdown("run complete")

    def request_shutdown(self, source: str = "unknown") -> None:
        self.shutdown.request_shutdown(source)

    def handle_focus_change(self, has_focus: bool) -> None:
        self.scheduler.handle_focus_change(has_focus)

    def status_payload(self) -> dict:
        return self.scheduler.status_payload()

    # ------------------------------------------------------------------
    # Cleanup callbacks

    async def _stop_collection(self) -> None:
        self.scheduler.shutdown()
        await self._tasks.cancel_all(timeout=2.0)
        await self.scheduler.stop_collection()
        # Drain saves that completed while stopping; they are no-ops once idle.
        self.scheduler.tick()

    async def _release_devices(self) -> None:
        audio = self.providers.audio
        if audio is not None:
            await asyncio.to_thread(audio.stop)
        camera = self.providers.camera
        if camera is not None:
            camera.close()
        await asyncio.to_thread(self.scheduler.close)
        self._unregister_atexit()

    # ------------------------------------------------------------------
    # Helpers

    async def _status_loop(self) -> None:
        interval = self.settings.status_interval
        while True:
            await asyncio.sleep(interval)
            status = self.scheduler.status_payload()
            logger.info(
                "Status: state=%s subject=%s rows=%d audio_level=%.4f audio_file=%s categories=%s",
                status["state"],
                status["subject_id"],
                status["total_rows"],
                status["audio_level"],
                status["audio_file"] or "-",
                ",".join(status["active_categories"]) or "-",
            )

    def _register_atexit(self) -> None:
        if not self._atexit_registered:
            atexit.register(self._stop_log_at_exit)
            self._atexit_registered = True

    def _unregister_atexit(self) -> None:
        if self._atexit_registered:
            atexit.unregister(self._stop_log_at_exit)
            self._atexit_registered = False

    def _stop_log_at_exit(self) -> None:
        if self.log.is_recording:
            logger.warning("Interpreter exiting with an open session; closing log")
            self.log.stop()


__all__ = ["ProviderSet", "SensorSuiteApp", "build_providers"]
