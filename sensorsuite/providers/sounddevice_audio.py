"""Microphone input built on a sounddevice InputStream feeding a ring buffer."""

from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np
import sounddevice as sd

from ..core.errors import SensorUnavailable
from ..core.logging_utils import get_module_logger
from .base import AudioRingBuffer, RingBufferSegment


class SoundDeviceAudioInput:
    """Owns the sounddevice stream and the shared sample ring buffer."""

    def __init__(
        self,
        device: Union[int, str, None] = None,
        *,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        buffer_seconds: float = 60.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.device = device
        self.logger = logger or get_module_logger("SoundDeviceAudio")
        try:
            info = sd.query_devices(device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            raise SensorUnavailable("audio_input", str(exc)) from exc

        self._sample_rate = int(sample_rate or info["default_samplerate"])
        self._channels = max(1, min(int(channels), int(info["max_input_channels"]) or 1))
        self._ring = AudioRingBuffer(
            capacity=int(self._sample_rate * buffer_seconds),
            channels=self._channels,
        )
        self.stream: Optional[sd.InputStream] = None
        self._last_status: Optional[str] = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def ring_buffer(self) -> AudioRingBuffer:
        return self._ring

    # ------------------------------------------------------------------
    # Stream lifecycle

    def start(self) -> None:
        if self.stream is not None:
            return

        def _callback(indata, frames, time_info, status):
            self._handle_callback(indata, status)

        self.logger.debug("Opening input stream for device %s", self.device)
        try:
            stream = sd.InputStream(
                device=self.device,
                channels=self._channels,
                samplerate=self._sample_rate,
                dtype="float32",
                callback=_callback,
                blocksize=0,
            )
            stream.start()
        except sd.PortAudioError as exc:
            self.logger.error("Failed to start stream: %s", exc)
            raise SensorUnavailable("audio_input", str(exc)) from exc
        self.stream = stream
        self.logger.info("Input stream started (%d Hz, %d ch)", self._sample_rate, self._channels)

    def stop(self) -> None:
        stream = self.stream
        if stream is None:
            return
        self.stream = None
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as exc:
            self.logger.debug("Stream close error: %s", exc)
        self.logger.info("Input stream stopped")

    def begin_segment(self, seconds: float) -> RingBufferSegment:
        if self.stream is None:
            raise SensorUnavailable("audio_input", "input stream is not running")
        return RingBufferSegment(self._ring, self._sample_rate, seconds)

    # ------------------------------------------------------------------
    # Audio callback

    def _handle_callback(self, indata, status: sd.CallbackFlags) -> None:
        self._ring.write(np.asarray(indata, dtype=np.float32))
        if status:
            status_str = str(status)
            if status_str != self._last_status:
                self.logger.warning("Audio callback status: %s", status_str)
                self._last_status = status_str


__all__ = ["SoundDeviceAudioInput"]
