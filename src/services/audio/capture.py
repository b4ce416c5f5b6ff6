"""Microphone capture capability.

``BaseMediaCapture`` is the injectable seam between the recorder and the
audio device: ``acquire()`` returns a live ``BaseMediaStream`` or raises
``DeviceError``. ``SoundDeviceCapture`` implements it with a PortAudio
input stream (via ``sounddevice``) and hands back one WAV container when
the stream is flushed.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod

from src.core.config import get_settings
from src.core.exceptions import DeviceError, DeviceErrorKind
from src.services.audio.processor import AudioProcessor

logger = logging.getLogger(__name__)


class BaseMediaStream(ABC):
    """A live, exclusively held microphone stream."""

    mime_type: str = "application/octet-stream"

    @property
    @abstractmethod
    def active_tracks(self) -> int:
        """Number of device tracks still open (0 after ``release()``)."""

    @abstractmethod
    def pause(self) -> None:
        """Suspend capture without releasing the device."""

    @abstractmethod
    def resume(self) -> None:
        """Continue capture after ``pause()``."""

    @abstractmethod
    def collect_chunks(self) -> list[bytes]:
        """Drain the encoded chunks produced since the previous call."""

    @abstractmethod
    async def flush(self) -> list[bytes]:
        """Stop capturing and return the final chunks.

        Completion may be asynchronous; callers must await it before
        assembling the recording.
        """

    @abstractmethod
    def release(self) -> None:
        """Stop all device tracks. Idempotent."""


class BaseMediaCapture(ABC):
    """Interface that every capture backend must implement."""

    @abstractmethod
    async def acquire(self) -> BaseMediaStream:
        """Open the microphone.

        Raises:
            DeviceError: If permission is denied, no device exists, the device
                is busy, or capture is unsupported on this system.
        """


def _device_error_from(exc: Exception) -> DeviceError:
    """Map a PortAudio / device lookup failure to a ``DeviceError`` kind."""
    message = str(exc).lower()
    if "permission" in message or "not permitted" in message or "denied" in message:
        kind = DeviceErrorKind.permission_denied
    elif (
        "unavailable" in message
        or "busy" in message
        or "-9985" in message
        or "in use" in message
    ):
        kind = DeviceErrorKind.busy
    elif (
        "no input" in message
        or "invalid device" in message
        or "no default" in message
        or "-9996" in message
        or "no device" in message
    ):
        kind = DeviceErrorKind.not_found
    else:
        kind = DeviceErrorKind.unsupported
    return DeviceError(kind)


class SoundDeviceStream(BaseMediaStream):
    """PortAudio input stream that buffers int16 blocks until flushed.

    The PortAudio callback runs on its own thread, so the frame list is
    guarded by a lock. The WAV container is produced once, on flush.
    """

    mime_type = "audio/wav"

    def __init__(self, processor: AudioProcessor) -> None:
        self._processor = processor
        self._frames: list = []
        self._lock = threading.Lock()
        self._stream = None
        self._released = False

    def attach(self, stream) -> None:
        """Bind the opened ``sounddevice.InputStream``."""
        self._stream = stream

    def on_audio(self, indata, frames, time_info, status) -> None:  # noqa: ARG002
        """sounddevice callback: copy the block out of PortAudio's buffer."""
        if status:
            logger.debug("Capture status: %s", status)
        with self._lock:
            self._frames.append(indata.copy())

    @property
    def active_tracks(self) -> int:
        return 0 if self._released or self._stream is None else 1

    def pause(self) -> None:
        if self._stream is not None and not self._released:
            self._stream.stop()

    def resume(self) -> None:
        if self._stream is not None and not self._released:
            self._stream.start()

    def collect_chunks(self) -> list[bytes]:
        # WAV needs the full sample count in its header; nothing until flush
        return []

    async def flush(self) -> list[bytes]:
        if self._stream is not None and not self._released:
            await asyncio.to_thread(self._stream.stop)
        with self._lock:
            frames, self._frames = self._frames, []
        data = await asyncio.to_thread(self._processor.frames_to_wav_bytes, frames)
        logger.debug(
            "Flushed %.1fs of audio (%d bytes)",
            self._processor.duration_seconds(frames),
            len(data),
        )
        return [data] if data else []

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._stream is None:
            return
        try:
            self._stream.close()
        except Exception:
            logger.warning("Failed to close capture stream cleanly", exc_info=True)
        with self._lock:
            self._frames = []


class SoundDeviceCapture(BaseMediaCapture):
    """Capture backend using the system microphone through PortAudio.

    Args:
        sample_rate: Capture rate in Hz (default from settings).
        channels: Channel count (default from settings).
        device: sounddevice input index, or None for the system default.
    """

    def __init__(
        self,
        sample_rate: int | None = None,
        channels: int | None = None,
        device: int | None = None,
    ) -> None:
        settings = get_settings()
        self._sample_rate = sample_rate or settings.capture_sample_rate
        self._channels = channels or settings.capture_channels
        self._device = device if device is not None else settings.capture_device
        self._processor = AudioProcessor(self._sample_rate, self._channels)

    async def acquire(self) -> BaseMediaStream:
        try:
            import sounddevice as sd
        except OSError as exc:
            # Raised at import time when the PortAudio library is missing
            raise DeviceError(DeviceErrorKind.unsupported) from exc

        handle = SoundDeviceStream(self._processor)
        try:
            stream = await asyncio.to_thread(self._open, sd, handle)
        except (sd.PortAudioError, ValueError) as exc:
            logger.warning("Microphone acquisition failed: %s", exc)
            raise _device_error_from(exc) from exc
        handle.attach(stream)
        logger.info(
            "Microphone acquired (device=%s, %d Hz, %d ch)",
            self._device if self._device is not None else "default",
            self._sample_rate,
            self._channels,
        )
        return handle

    def _open(self, sd, handle: SoundDeviceStream):
        """Validate settings, open and start the input stream (blocking)."""
        sd.check_input_settings(
            device=self._device,
            channels=self._channels,
            samplerate=self._sample_rate,
            dtype="int16",
        )
        stream = sd.InputStream(
            samplerate=self._sample_rate,
            channels=self._channels,
            dtype="int16",
            device=self._device,
            callback=handle.on_audio,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        return stream
