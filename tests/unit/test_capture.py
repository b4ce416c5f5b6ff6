"""Tests for SoundDeviceCapture with a stand-in ``sounddevice`` module.

No audio hardware is touched: ``sounddevice`` is replaced in
``sys.modules`` for the duration of each test.
"""

import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from src.core.exceptions import DeviceError, DeviceErrorKind
from src.services.audio.capture import SoundDeviceCapture, _device_error_from


class PortAudioError(Exception):
    pass


@pytest.fixture
def fake_sd():
    """A minimal sounddevice replacement whose InputStream records its callback."""
    streams = []

    def input_stream(**kwargs):
        stream = MagicMock()
        stream.kwargs = kwargs
        streams.append(stream)
        return stream

    module = SimpleNamespace(
        PortAudioError=PortAudioError,
        check_input_settings=MagicMock(),
        InputStream=MagicMock(side_effect=input_stream),
        streams=streams,
    )
    with patch.dict(sys.modules, {"sounddevice": module}):
        yield module


def _block(value: int, samples: int = 1600) -> np.ndarray:
    return np.full((samples, 1), value, dtype=np.int16)


class TestAcquire:
    async def test_acquire_opens_and_starts_stream(self, fake_sd):
        capture = SoundDeviceCapture(sample_rate=16000, channels=1)

        stream = await capture.acquire()

        assert stream.active_tracks == 1
        assert stream.mime_type == "audio/wav"
        opened = fake_sd.streams[0]
        opened.start.assert_called_once()
        assert opened.kwargs["samplerate"] == 16000
        assert opened.kwargs["dtype"] == "int16"
        fake_sd.check_input_settings.assert_called_once()

    async def test_flush_returns_one_wav_container(self, fake_sd):
        stream = await SoundDeviceCapture(sample_rate=16000, channels=1).acquire()
        callback = fake_sd.streams[0].kwargs["callback"]
        callback(_block(100), 1600, None, None)
        callback(_block(200), 1600, None, None)

        assert stream.collect_chunks() == []
        chunks = await stream.flush()

        assert len(chunks) == 1
        assert chunks[0][:4] == b"RIFF"
        fake_sd.streams[0].stop.assert_called()

    async def test_flush_without_audio_is_empty(self, fake_sd):
        stream = await SoundDeviceCapture().acquire()

        assert await stream.flush() == []

    async def test_pause_and_resume_drive_the_stream(self, fake_sd):
        stream = await SoundDeviceCapture().acquire()
        opened = fake_sd.streams[0]

        stream.pause()
        stream.resume()

        opened.stop.assert_called_once()
        assert opened.start.call_count == 2

    async def test_release_is_idempotent(self, fake_sd):
        stream = await SoundDeviceCapture().acquire()

        stream.release()
        stream.release()

        assert stream.active_tracks == 0
        fake_sd.streams[0].close.assert_called_once()

    async def test_invalid_device_is_not_found(self, fake_sd):
        fake_sd.check_input_settings.side_effect = PortAudioError(
            "Error querying device 7: Invalid device [PaErrorCode -9996]"
        )

        with pytest.raises(DeviceError) as exc_info:
            await SoundDeviceCapture(device=7).acquire()

        assert exc_info.value.kind is DeviceErrorKind.not_found
        assert fake_sd.streams == []

    async def test_start_failure_closes_stream(self, fake_sd):
        def failing(**kwargs):
            stream = MagicMock()
            stream.start.side_effect = PortAudioError("Device unavailable [PaErrorCode -9985]")
            fake_sd.streams.append(stream)
            return stream

        fake_sd.InputStream.side_effect = failing

        with pytest.raises(DeviceError) as exc_info:
            await SoundDeviceCapture().acquire()

        assert exc_info.value.kind is DeviceErrorKind.busy
        fake_sd.streams[0].close.assert_called_once()


@pytest.mark.parametrize(
    ("message", "kind"),
    [
        ("Permission denied", DeviceErrorKind.permission_denied),
        ("Device unavailable [PaErrorCode -9985]", DeviceErrorKind.busy),
        ("No input device matching 'USB'", DeviceErrorKind.not_found),
        ("Invalid number of channels", DeviceErrorKind.unsupported),
    ],
)
def test_device_error_mapping(message, kind):
    assert _device_error_from(PortAudioError(message)).kind is kind
