"""Multi-rate sampling scheduler feeding one shared session log.

All sampling, row assembly and log writes happen on the serialization
thread, inside :meth:`SamplingScheduler.tick`. Each tick drains the
cross-thread dispatcher, fires every due periodic timer in registration
order and then applies the log's time-based flush.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from ..config.settings import SuiteSettings
from ..core.asyncio_utils import create_logged_task
from ..core.buffered_log import BufferedLog
from ..core.dispatcher import CrossThreadDispatcher
from ..core.errors import BackgroundSaveError, ConfigurationError, SensorUnavailable
from ..core.logging_utils import get_module_logger
from ..core.paths import audio_recordings_dir, video_frames_dir
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
from ..providers.sensor_access import Capability, SensorAccess
from .captures import AudioSegmentRecorder, FrameCapture
from .schema import AudioLevels, GazeSample, RowKind, build_row, header
from .snapshot import SensorSnapshot, SessionContext, SnapshotCollector

logger = get_module_logger("SamplingScheduler")

StatusObserver = Callable[[str, Any], None]


class CollectionState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class Category(str, Enum):
    EYE = "eye"
    IMU = "imu"
    LIGHT = "light"
    AUDIO_LEVEL = "audio_level"
    VIDEO = "video"
    AUDIO_FILE = "audio_file"


CATEGORY_REQUIREMENTS: dict[Category, tuple[Capability, ...]] = {
    Category.EYE: (Capability.EYE_TRACKING_PERMISSION, Capability.EYE_TRACKER),
    Category.IMU: (),
    Category.LIGHT: (Capability.LIGHT_SENSOR,),
    Category.AUDIO_LEVEL: (Capability.AUDIO_RECORD_PERMISSION, Capability.AUDIO_INPUT),
    Category.VIDEO: (Capability.CAMERA_PERMISSION, Capability.CAMERA),
    Category.AUDIO_FILE: (Capability.AUDIO_RECORD_PERMISSION, Capability.AUDIO_INPUT),
}

AUDIO_FILE_TASK = "audio_file_recording"
VIDEO_CAPTURE_TASK = "video_capture"


class PeriodicTimer:
    """Fixed-rate timer evaluated by the tick loop.

    The n-th firing is due at ``anchor + n * period``. The first tick after
    a reset fires immediately and becomes the anchor; a timer that falls more
    than one period behind re-anchors rather than firing a burst.
    """

    __slots__ = ("name", "period", "callback", "paused", "_anchor", "_index", "fired")

    def __init__(self, name: str, period: float, callback: Callable[[], None]) -> None:
        if period <= 0:
            raise ValueError(f"Timer period must be positive (got {period})")
        self.name = name
        self.period = float(period)
        self.callback = callback
        self.paused = False
        self.fired = 0
        self._anchor: Optional[float] = None
        self._index = 0

    @property
    def next_due(self) -> Optional[float]:
        if self._anchor is None:
            return None
        return self._anchor + self._index * self.period

    def reset(self) -> None:
        self._anchor = None
        self._index = 0

    def due(self, now: float) -> bool:
        if self.paused:
            return False
        next_due = self.next_due
        return next_due is None or now >= next_due

    def fire(self, now: float) -> None:
        next_due = self.next_due
        if next_due is None or now - next_due > self.period:
            self._anchor = now
            self._index = 1
        else:
            self._index += 1
        self.fired += 1
        try:
            self.callback()
        except Exception as exc:
            logger.error("Error collecting %s data: %s", self.name, exc, exc_info=True)


class SamplingScheduler:
    """Drives the periodic producers and owns row assembly and event logging."""

    def __init__(
        self,
        settings: Optional[SuiteSettings] = None,
        *,
        log: Optional[BufferedLog],
        dispatcher: Optional[CrossThreadDispatcher],
        sensor_access: Optional[SensorAccess],
        eye: Optional[EyeTrackingProvider] = None,
        motion: Optional[MotionProvider] = None,
        pose: Optional[PoseProvider] = None,
        light: Optional[LightProvider] = None,
        expression: Optional[ExpressionProvider] = None,
        audio: Optional[AudioInputProvider] = None,
        camera: Optional[CameraProvider] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings or SuiteSettings()
        self.log = log
        self.dispatcher = dispatcher
        self.sensor_access = sensor_access
        self.eye = eye
        self.motion = motion
        self.pose = pose
        self.light = light
        self.expression = expression
        self.audio = audio
        self.camera = camera
        self._clock = clock
        self._now = now

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="SensorSuiteSave")
        self._tasks = AsyncTaskManager("CaptureTasks", logger)

        self._state = CollectionState.IDLE
        self._context = SessionContext(
            study_selection=self.settings.study_selection,
            task_load=self.settings.task_load,
            path_type=self.settings.path_type,
        )
        self._collector: Optional[SnapshotCollector] = None
        self._timers: list[PeriodicTimer] = []
        self._categories: dict[Category, Optional[PeriodicTimer]] = {}
        self._paused: set[Category] = set()
        self._frame_capture: Optional[FrameCapture] = None
        self._audio_recorder: Optional[AudioSegmentRecorder] = None
        self._audio_position = 0
        self._current_audio_level = 0.0
        self._total_rows = 0
        self._save_errors = 0
        self._unsubscribe_access: Optional[Callable[[], None]] = None
        self._observers: list[StatusObserver] = []
        self._shutdown = asyncio.Event()
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection

    @property
    def state(self) -> CollectionState:
        return self._state

    @property
    def is_collecting(self) -> bool:
        return self._state is CollectionState.RUNNING

    @property
    def total_rows(self) -> int:
        return self._total_rows

    @property
    def current_audio_level(self) -> float:
        return self._current_audio_level

    @property
    def current_audio_file(self) -> Optional[str]:
        recorder = self._audio_recorder
        return recorder.current_file if recorder is not None else None

    @property
    def active_categories(self) -> list[str]:
        return [category.value for category in self._categories if category not in self._paused]

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def timers(self) -> tuple[PeriodicTimer, ...]:
        return tuple(self._timers)

    def status_payload(self) -> dict[str, Any]:
        log = self.log
        file_path = log.file_path if log is not None else None
        return {
            "state": self._state.value,
            "subject_id": log.subject_id if log is not None else None,
            "total_rows": self._total_rows,
            "file_path": str(file_path) if file_path else None,
            "active_categories": self.active_categories,
            "audio_level": round(self._current_audio_level, 4),
            "audio_file": self.current_audio_file,
            "pending_dispatch": self.dispatcher.pending if self.dispatcher is not None else 0,
            "save_errors": self._save_errors,
        }

    # ------------------------------------------------------------------
    # Observable state helpers

    def subscribe(self, observer: StatusObserver) -> None:
        self._observers.append(observer)

    def _notify(self, prop: str, value: Any) -> None:
        for observer in list(self._observers):
            try:
                observer(prop, value)
            except Exception:
                logger.debug("Status observer failed for %s", prop, exc_info=True)

    def set_context(
        self,
        *,
        study_selection: Optional[str] = None,
        task_load: Optional[str] = None,
        path_type: Optional[str] = None,
    ) -> None:
        current = self._context
        self._context = SessionContext(
            study_selection=study_selection if study_selection is not None else current.study_selection,
            task_load=task_load if task_load is not None else current.task_load,
            path_type=path_type if path_type is not None else current.path_type,
        )
        self._notify("context", self._context)

    # ------------------------------------------------------------------
    # Session lifecycle

    async def start_collection(self, subject_id: Optional[str] = None) -> bool:
        if self._state is CollectionState.RUNNING:
            logger.warning("Data collection already in progress")
            return False

        missing = [
            name
            for name, collaborator in (
                ("log", self.log),
                ("dispatcher", self.dispatcher),
                ("sensor_access", self.sensor_access),
            )
            if collaborator is None
        ]
        if missing:
            logger.error("Required components not available for data collection: %s", ", ".join(missing))
            raise ConfigurationError(f"Missing collaborator(s): {', '.join(missing)}")

        settings = self.settings
        self._collector = SnapshotCollector(
            self.sensor_access,
            motion=self.motion if settings.collect_imu else None,
            pose=self.pose,
            light=self.light,
            expression=self.expression if settings.collect_facial else None,
            collect_pose=settings.collect_camera_pose,
            collect_expression=settings.collect_facial,
            now=self._now,
        )

        session = self.log.start(subject_id or settings.subject_id)
        self.log.write_header(header(self._collector.expression_channels))

        self._state = CollectionState.RUNNING
        self._total_rows = 0
        self._save_errors = 0
        self._current_audio_level = 0.0
        self._paused.clear()
        self.log_event("SUBJECT_ID", session.subject_id)

        self._schedule_categories()
        self._unsubscribe_access = self.sensor_access.subscribe(self._on_capability_changed)

        logger.info("Started data collection with subject ID: %s", session.subject_id)
        self._notify("state", self._state)
        return True

    async def stop_collection(self) -> None:
        if self._state is not CollectionState.RUNNING:
            logger.warning("Data collection not in progress")
            return

        if self._unsubscribe_access is not None:
            self._unsubscribe_access()
            self._unsubscribe_access = None

        self._timers.clear()
        self._categories.clear()
        self._paused.clear()
        if self._frame_capture is not None:
            self._frame_capture.detach()
        cancelled = await self._tasks.cancel_all(timeout=5.0)
        if not cancelled:
            logger.warning("Some capture tasks did not stop cleanly")

        self.log.stop()
        self._state = CollectionState.IDLE
        logger.info("Stopped data collection. Total data points collected: %d", self._total_rows)
        self._notify("state", self._state)

    def handle_focus_change(self, has_focus: bool) -> None:
        """Focus or visibility loss only flushes; the session stays open."""
        if has_focus or self.log is None or not self.log.is_recording:
            return
        self.log.safety_flush()

    def close(self) -> None:
        """Release the worker executor; pending saves finish first."""
        if self._closed:
            return
        self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        if self.dispatcher is not None and self.dispatcher.pending:
            logger.debug("Discarding %d queued action(s) at close", self.dispatcher.pending)

    # ------------------------------------------------------------------
    # Tick loop

    def tick(self, now: Optional[float] = None) -> None:
        if now is None:
            now = self._clock()
        if self.dispatcher is not None:
            self.dispatcher.drain()
        if self._state is CollectionState.RUNNING:
            for timer in list(self._timers):
                if self._state is not CollectionState.RUNNING:
                    break
                if timer.due(now):
                    timer.fire(now)
        if self.log is not None:
            self.log.flush_if_due()

    async def run(self) -> None:
        """Tick every ``tick_interval`` seconds until :meth:`shutdown`."""
        interval = self.settings.tick_interval
        self._shutdown.clear()
        while not self._shutdown.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def shutdown(self) -> None:
        self._shutdown.set()

    # ------------------------------------------------------------------
    # Category scheduling

    def _schedule_categories(self) -> None:
        settings = self.settings
        self._timers.clear()
        self._categories.clear()
        self._frame_capture = None
        self._audio_recorder = None

        plan = (
            (Category.EYE, settings.collect_eye_tracking, self._eye_available,
             1.0 / settings.eye_frequency, self._collect_eye),
            (Category.IMU, settings.collect_imu, self._imu_available,
             1.0 / settings.imu_frequency, self._collect_imu),
            (Category.LIGHT, settings.collect_light, self._light_available,
             1.0 / settings.light_frequency, self._collect_light),
            (Category.AUDIO_LEVEL, settings.collect_audio, self._audio_available,
             1.0 / settings.audio_frequency, self._collect_audio_level),
            (Category.VIDEO, settings.collect_video, self._camera_available,
             settings.video_capture_interval, self._capture_video_frame),
        )
        for category, enabled, check, period, callback in plan:
            if not enabled:
                logger.debug("%s collection disabled by settings", category.value)
                continue
            try:
                check()
            except SensorUnavailable as exc:
                logger.info("Skipping %s collection: %s", category.value, exc)
                continue
            timer = PeriodicTimer(category.value, period, callback)
            self._timers.append(timer)
            self._categories[category] = timer

        if Category.AUDIO_LEVEL in self._categories:
            self._audio_position = self.audio.ring_buffer.position

        if Category.VIDEO in self._categories:
            self._frame_capture = FrameCapture(
                self.camera,
                output_dir=video_frames_dir(settings.output_dir),
                dispatcher=self.dispatcher,
                executor=self._executor,
                on_event=self.log_event,
                on_error=self._report_save_error,
                now=self._now,
            )
            self._frame_capture.attach()

        if settings.record_audio_files:
            try:
                self._audio_file_available()
            except SensorUnavailable as exc:
                logger.info("Skipping audio file recording: %s", exc)
            else:
                self._audio_recorder = AudioSegmentRecorder(
                    self.audio,
                    output_dir=audio_recordings_dir(settings.output_dir),
                    segment_length=settings.audio_segment_length,
                    dispatcher=self.dispatcher,
                    executor=self._executor,
                    on_event=self.log_event,
                    on_error=self._report_save_error,
                    active=self._audio_file_active,
                    now=self._now,
                )
                self._categories[Category.AUDIO_FILE] = None
                self._start_audio_file_task()

        logger.info("Active categories: %s", ", ".join(self.active_categories) or "none")

    def _require(self, category: Category, provider: Any) -> None:
        if provider is None:
            raise SensorUnavailable(category.value, "no provider configured")
        missing = [cap.value for cap in CATEGORY_REQUIREMENTS[category] if not self.sensor_access.get(cap)]
        if missing:
            raise SensorUnavailable(category.value, f"missing {', '.join(missing)}")

    def _eye_available(self) -> None:
        self._require(Category.EYE, self.eye)

    def _imu_available(self) -> None:
        self._require(Category.IMU, self.motion or self.pose)

    def _light_available(self) -> None:
        self._require(Category.LIGHT, self.light)

    def _audio_available(self) -> None:
        self._require(Category.AUDIO_LEVEL, self.audio)

    def _audio_file_available(self) -> None:
        self._require(Category.AUDIO_FILE, self.audio)

    def _camera_available(self) -> None:
        self._require(Category.VIDEO, self.camera)
        if not self.camera.connected:
            raise SensorUnavailable(Category.VIDEO.value, "camera not connected")

    def _audio_file_active(self) -> bool:
        return (
            self._state is CollectionState.RUNNING
            and Category.AUDIO_FILE in self._categories
            and Category.AUDIO_FILE not in self._paused
        )

    def _start_audio_file_task(self) -> None:
        if self._audio_recorder is None or self._tasks.is_active(AUDIO_FILE_TASK):
            return
        self._tasks.create(self._audio_recorder.run(), name=AUDIO_FILE_TASK)

    # ------------------------------------------------------------------
    # Capability changes

    def _on_capability_changed(self, capability: Capability, value: bool) -> None:
        # May arrive on any thread; applied on the serialization thread.
        dispatcher = self.dispatcher
        if dispatcher is not None:
            dispatcher.enqueue(lambda: self._apply_capability(capability, value))

    def _apply_capability(self, capability: Capability, value: bool) -> None:
        if self._state is not CollectionState.RUNNING:
            return
        for category in list(self._categories):
            requirements = CATEGORY_REQUIREMENTS[category]
            if capability not in requirements:
                continue
            satisfied = all(self.sensor_access.get(cap) for cap in requirements)
            timer = self._categories[category]
            if not satisfied and category not in self._paused:
                self._paused.add(category)
                if timer is not None:
                    timer.paused = True
                if category is Category.AUDIO_FILE:
                    create_logged_task(
                        self._tasks.cancel(AUDIO_FILE_TASK),
                        logger=logger,
                        context="cancel audio file recording",
                    )
                logger.info("%s paused: %s revoked", category.value, capability.value)
            elif satisfied and category in self._paused:
                self._paused.discard(category)
                if timer is not None:
                    timer.paused = False
                    timer.reset()
                if category is Category.AUDIO_LEVEL:
                    # Audio buffered while revoked is never measured.
                    self._audio_position = self.audio.ring_buffer.position
                if category is Category.AUDIO_FILE:
                    self._start_audio_file_task()
                logger.info("%s resumed: %s granted", category.value, capability.value)
        self._notify("categories", self.active_categories)

    # ------------------------------------------------------------------
    # Per-category producers

    def _snapshot(self) -> SensorSnapshot:
        return self._collector.collect(self._context, self.current_audio_file)

    def _write(self, row: list[str]) -> None:
        self.log.write_row(row)
        self._total_rows += 1

    def _collect_eye(self) -> None:
        frame = self.eye.read_frame()
        if frame is None:
            return
        for pupil, geometric in frame.valid_pairs():
            snapshot = self._snapshot()
            sample = GazeSample(pupil=pupil, geometric=geometric, frame=frame)
            self._write(build_row(RowKind.GAZE_SAMPLE, snapshot, gaze=sample))

    def _collect_imu(self) -> None:
        self._write(build_row(RowKind.IMU_SAMPLE, self._snapshot()))

    def _collect_light(self) -> None:
        lux = self._collector.read_lux()
        if lux is not None and lux >= 0:
            self.log_event("LUX_READING", f"{lux:.2f}")

    def _collect_audio_level(self) -> None:
        samples, self._audio_position = self.audio.ring_buffer.read_since(self._audio_position)
        if samples.size:
            magnitudes = np.abs(samples.astype(np.float64))
            peak = float(np.max(magnitudes))
            rms = float(np.sqrt(np.mean(np.square(magnitudes))))
        else:
            peak = rms = 0.0
        self._current_audio_level = rms

        event = "AUDIO_ACTIVITY" if peak > self.settings.audio_sensitivity else "AUDIO_LEVEL"
        self.log_event(event, f"{peak:.4f}", audio=AudioLevels(level=rms, peak=peak, rms=rms))

    def _capture_video_frame(self) -> None:
        capture = self._frame_capture
        if capture is None or capture.in_flight or self._tasks.is_active(VIDEO_CAPTURE_TASK):
            return
        self._tasks.create(capture.capture_once(), name=VIDEO_CAPTURE_TASK)

    # ------------------------------------------------------------------
    # Events

    def log_event(self, name: str, value: str = "", *, audio: Optional[AudioLevels] = None) -> None:
        """Write one discrete event row; ignored unless collecting."""
        if self._state is not CollectionState.RUNNING:
            logger.debug("Ignoring event %s while idle", name)
            return
        row = build_row(RowKind.EVENT, self._snapshot(), event_name=name, value=value, audio=audio)
        self._write(row)

    def _report_save_error(self, error: BackgroundSaveError) -> None:
        self._save_errors += 1
        logger.error("Background save failed: %s", error)
        self._notify("save_error", error)


__all__ = [
    "CATEGORY_REQUIREMENTS",
    "Category",
    "CollectionState",
    "PeriodicTimer",
    "SamplingScheduler",
]
