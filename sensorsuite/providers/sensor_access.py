"""Capability flags (permissions and sensor availability) with change notifications."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional, Union

from ..core.logging_utils import get_module_logger

logger = get_module_logger("SensorAccess")


class Capability(str, Enum):
    # Permissions
    EYE_TRACKING_PERMISSION = "eye_tracking_permission"
    PUPIL_SIZE_PERMISSION = "pupil_size_permission"
    FACIAL_EXPRESSION_PERMISSION = "facial_expression_permission"
    AUDIO_RECORD_PERMISSION = "audio_record_permission"
    CAMERA_PERMISSION = "camera_permission"
    # Availability
    EYE_TRACKER = "eye_tracker"
    FACIAL_EXPRESSION = "facial_expression"
    LIGHT_SENSOR = "light_sensor"
    ACCELEROMETER = "accelerometer"
    GYROSCOPE = "gyroscope"
    LINEAR_ACCELERATION = "linear_acceleration"
    ATTITUDE_SENSOR = "attitude_sensor"
    AUDIO_INPUT = "audio_input"
    CAMERA = "camera"


PERMISSIONS = (
    Capability.EYE_TRACKING_PERMISSION,
    Capability.PUPIL_SIZE_PERMISSION,
    Capability.FACIAL_EXPRESSION_PERMISSION,
    Capability.AUDIO_RECORD_PERMISSION,
    Capability.CAMERA_PERMISSION,
)

CapabilityObserver = Callable[[Capability, bool], None]
CapabilityKey = Union[Capability, str]


class SensorAccess:
    """Thread-safe registry of capability flags.

    Observers are called with ``(capability, value)`` on the thread that
    changed the flag, and only when the value actually changes.
    """

    def __init__(self, flags: Optional[Mapping[CapabilityKey, bool]] = None) -> None:
        self._lock = threading.Lock()
        self._flags: dict[Capability, bool] = {capability: False for capability in Capability}
        self._observers: list[CapabilityObserver] = []
        for key, value in (flags or {}).items():
            self._flags[Capability(key)] = bool(value)

    @classmethod
    def all_granted(cls) -> "SensorAccess":
        return cls({capability: True for capability in Capability})

    def get(self, capability: CapabilityKey) -> bool:
        with self._lock:
            return self._flags[Capability(capability)]

    def all(self, capabilities: Iterable[CapabilityKey]) -> bool:
        with self._lock:
            return all(self._flags[Capability(capability)] for capability in capabilities)

    def all_permissions_granted(self) -> bool:
        return self.all(PERMISSIONS)

    def snapshot(self) -> dict[str, bool]:
        with self._lock:
            return {capability.value: value for capability, value in self._flags.items()}

    def set_capability(self, capability: CapabilityKey, value: bool) -> None:
        key = Capability(capability)
        value = bool(value)
        with self._lock:
            if self._flags[key] == value:
                return
            self._flags[key] = value
            observers = list(self._observers)

        logger.info("%s %s", key.value, "granted" if value else "revoked")
        for observer in observers:
            try:
                observer(key, value)
            except Exception:
                logger.exception("Capability observer failed for %s", key.value)

    def subscribe(self, observer: CapabilityObserver) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _unsubscribe


__all__ = ["Capability", "CapabilityObserver", "PERMISSIONS", "SensorAccess"]
