"""Point-in-time reading of every non-eye sensor, shared by all row kinds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from ..core.logging_utils import get_module_logger
from ..providers.base import (
    ExpressionProvider,
    HeadPose,
    LightProvider,
    MotionProvider,
    MotionReading,
    PoseProvider,
)
from ..providers.sensor_access import Capability, SensorAccess
from .schema import format_timestamp

logger = get_module_logger("Snapshot")


@dataclass(slots=True, frozen=True)
class SessionContext:
    study_selection: str = "DefaultStudy"
    task_load: str = "Medium"
    path_type: str = "Default"


@dataclass(slots=True, frozen=True)
class SensorSnapshot:
    timestamp: str
    study_selection: str
    task_load: str
    path_type: str
    motion: Optional[MotionReading] = None
    pose: Optional[HeadPose] = None
    lux: Optional[float] = None
    audio_recording: Optional[str] = None
    expression_weights: Sequence[Optional[float]] = field(default_factory=tuple)


class SnapshotCollector:
    """Polls the motion, pose, light and expression collaborators.

    A reading is taken only when the matching capability is present; a
    provider that raises yields ``N/A`` columns for that snapshot instead of
    failing the row.
    """

    def __init__(
        self,
        sensor_access: SensorAccess,
        *,
        motion: Optional[MotionProvider] = None,
        pose: Optional[PoseProvider] = None,
        light: Optional[LightProvider] = None,
        expression: Optional[ExpressionProvider] = None,
        collect_pose: bool = True,
        collect_expression: bool = True,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.sensor_access = sensor_access
        self.motion = motion
        self.pose = pose
        self.light = light
        self.expression = expression
        self.collect_pose = collect_pose
        self.collect_expression = collect_expression
        self._now = now

    @property
    def expression_channels(self) -> tuple[str, ...]:
        if self.expression is None:
            return ()
        return tuple(self.expression.channel_names)

    def collect(self, context: SessionContext, audio_recording: Optional[str] = None) -> SensorSnapshot:
        return SensorSnapshot(
            timestamp=format_timestamp(self._now()),
            study_selection=context.study_selection,
            task_load=context.task_load,
            path_type=context.path_type,
            motion=self._read_motion(),
            pose=self._read_pose(),
            lux=self.read_lux(),
            audio_recording=audio_recording or None,
            expression_weights=self._read_expression(),
        )

    def read_lux(self) -> Optional[float]:
        if self.light is None or not self.sensor_access.get(Capability.LIGHT_SENSOR):
            return None
        try:
            lux = self.light.read_lux()
        except Exception as exc:
            logger.warning("Light sensor read failed: %s", exc)
            return None
        if lux is None or lux < 0:
            return None
        return float(lux)

    def _read_motion(self) -> Optional[MotionReading]:
        if self.motion is None:
            return None
        access = self.sensor_access
        try:
            reading = self.motion.read()
        except Exception as exc:
            logger.warning("Motion read failed: %s", exc)
            return None
        return MotionReading(
            acceleration=reading.acceleration if access.get(Capability.ACCELEROMETER) else None,
            angular_velocity=reading.angular_velocity if access.get(Capability.GYROSCOPE) else None,
            linear_acceleration=(
                reading.linear_acceleration if access.get(Capability.LINEAR_ACCELERATION) else None
            ),
            attitude=reading.attitude if access.get(Capability.ATTITUDE_SENSOR) else None,
        )

    def _read_pose(self) -> Optional[HeadPose]:
        if not self.collect_pose or self.pose is None:
            return None
        try:
            return self.pose.read()
        except Exception as exc:
            logger.warning("Pose read failed: %s", exc)
            return None

    def _read_expression(self) -> tuple[Optional[float], ...]:
        channels = self.expression_channels
        if not channels:
            return ()
        access = self.sensor_access
        if not (
            self.collect_expression
            and access.get(Capability.FACIAL_EXPRESSION_PERMISSION)
            and access.get(Capability.FACIAL_EXPRESSION)
        ):
            return (None,) * len(channels)
        try:
            weights = list(self.expression.read_weights())
        except Exception as exc:
            logger.warning("Error collecting facial expression data: %s", exc)
            return (None,) * len(channels)
        if len(weights) != len(channels):
            logger.warning("Expression provider returned %d weights for %d channels", len(weights), len(channels))
            weights = (weights + [None] * len(channels))[: len(channels)]
        return tuple(None if weight is None else float(weight) for weight in weights)


__all__ = ["SensorSnapshot", "SessionContext", "SnapshotCollector"]
