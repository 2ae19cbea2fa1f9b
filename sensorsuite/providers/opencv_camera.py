"""OpenCV VideoCapture camera delivering JPEG stills through the image callback."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Optional, Tuple

import cv2

from ..core.errors import SensorUnavailable
from ..core.logging_utils import ensure_structured_logger
from .base import CapturedImage, ConvergenceState, ImageCallback, ImageFormat


class OpenCVCamera:
    """Still-capture adapter for a local camera.

    OpenCV exposes no AE/AWB state, so the pre-capture step reads and
    discards ``warmup_frames`` frames and reports exposure as converged once
    that has succeeded at least once.
    """

    def __init__(
        self,
        index: int = 0,
        *,
        target_size: Optional[Tuple[int, int]] = (1920, 1080),
        jpeg_quality: int = 90,
        warmup_frames: int = 3,
        logger=None,
    ) -> None:
        self.index = index
        self.target_size = target_size
        self.jpeg_quality = jpeg_quality
        self.warmup_frames = warmup_frames
        self.logger = ensure_structured_logger(
            logger,
            component=f"OpenCVCamera.{index}",
            fallback_name="OpenCVCamera",
        )
        self._callback: Optional[ImageCallback] = None
        self._io_lock = threading.Lock()
        self._settled = False
        self._cap: Optional[Any] = cv2.VideoCapture(index)
        if not self._cap.isOpened():
            self._cap.release()
            self._cap = None
            raise SensorUnavailable("camera", f"camera {index} could not be opened")

        if target_size:
            width, height = target_size
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.logger.info(
            "Camera %d opened at %dx%d",
            index,
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    @property
    def connected(self) -> bool:
        return self._cap is not None

    def set_image_callback(self, callback: Optional[ImageCallback]) -> None:
        self._callback = callback

    async def precapture_ae_awb(self) -> bool:
        settled = await asyncio.to_thread(self._warm_up)
        if settled:
            self._settled = True
        return settled

    async def capture_image(self) -> bool:
        data = await asyncio.to_thread(self._grab_jpeg)
        if data is None:
            return False
        state = ConvergenceState.CONVERGED if self._settled else ConvergenceState.SEARCHING
        callback = self._callback
        if callback is not None:
            callback(CapturedImage(data=data, image_format=ImageFormat.JPEG, ae_state=state, awb_state=state))
        return True

    def close(self) -> None:
        with self._io_lock:
            cap = self._cap
            self._cap = None
        if cap is not None:
            cap.release()
            self.logger.info("Camera %d released", self.index)
        self._callback = None

    # ------------------------------------------------------------------
    # Blocking helpers (worker thread)

    def _warm_up(self) -> bool:
        with self._io_lock:
            if self._cap is None:
                return False
            for _ in range(max(1, self.warmup_frames)):
                if not self._cap.grab():
                    self.logger.warning("Pre-capture grab failed")
                    return False
        return True

    def _grab_jpeg(self) -> Optional[bytes]:
        with self._io_lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        if not ok or frame is None:
            self.logger.error("Frame read failed")
            return None
        success, encoded = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not success:
            self.logger.error("JPEG encoding failed")
            return None
        return encoded.tobytes()


__all__ = ["OpenCVCamera"]
