"""Tests for AudioProcessor (WAV packing and silence detection).

Validates that int16 capture blocks are packed into a readable WAV
container and that silence detection works for empty, quiet and loud
audio with configurable thresholds.
"""

import io

import numpy as np
import pytest
import soundfile as sf

from src.services.audio.processor import AudioProcessor


@pytest.fixture
def processor():
    """Create an AudioProcessor configured for 16 kHz mono audio."""
    return AudioProcessor(sample_rate=16000, channels=1)


def _tone(seconds: float = 0.5, amplitude: int = 8000) -> np.ndarray:
    """A 440 Hz int16 tone shaped (samples, 1) like a sounddevice block."""
    t = np.arange(int(16000 * seconds)) / 16000
    return (amplitude * np.sin(2 * np.pi * 440 * t)).astype(np.int16).reshape(-1, 1)


class TestFramesToWav:
    """Verify capture blocks become one 16-bit PCM WAV file."""

    def test_wav_round_trip(self, processor):
        """The container decodes back to the same samples and rate."""
        frames = [_tone(0.5), _tone(0.25)]

        data = processor.frames_to_wav_bytes(frames)

        assert data[:4] == b"RIFF"
        samples, rate = sf.read(io.BytesIO(data), dtype="int16")
        assert rate == 16000
        assert len(samples) == 12000
        assert np.array_equal(samples, np.concatenate(frames).reshape(-1))

    def test_empty_frames(self, processor):
        """No captured samples produce no container."""
        assert processor.frames_to_wav_bytes([]) == b""

    def test_duration(self, processor):
        """Duration is samples divided by sample rate."""
        assert processor.duration_seconds([_tone(0.5), _tone(0.5)]) == pytest.approx(1.0)


class TestIsSilent:
    """Verify silence detection logic based on RMS energy threshold."""

    def test_silence_detected(self, processor):
        """Zero amplitude audio is classified as silent."""
        assert processor.is_silent([np.zeros((16000, 1), dtype=np.int16)]) is True

    def test_audio_not_silent(self, processor):
        """A clearly audible tone is not silent."""
        assert processor.is_silent([_tone()]) is False

    def test_empty_is_silent(self, processor):
        """No samples at all counts as silence."""
        assert processor.is_silent([]) is True

    def test_threshold_is_configurable(self, processor):
        """A quiet tone is silent only under a higher threshold."""
        quiet = [_tone(amplitude=200)]
        assert processor.is_silent(quiet, threshold=0.001) is False
        assert processor.is_silent(quiet, threshold=0.05) is True
