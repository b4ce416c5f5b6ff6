"""Audio processing utilities for captured PCM frames.

Packs captured int16 frames into a WAV container and provides
silence detection for capture-level diagnostics.
"""

import io

import numpy as np
import soundfile as sf


class AudioProcessor:
    """Handles PCM frame packing and analysis.

    Converts blocks delivered by the capture callback into a single
    WAV container and measures signal energy.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
    ) -> None:
        """Initialize the audio processor.

        Args:
            sample_rate: Audio sample rate in Hz (default: 16 kHz).
            channels: Number of audio channels (1 = mono).
        """
        self.sample_rate = sample_rate
        self.channels = channels

    def join_frames(self, frames: list[np.ndarray]) -> np.ndarray:
        """Concatenate capture blocks into one (samples, channels) int16 array."""
        if not frames:
            return np.zeros((0, self.channels), dtype=np.int16)
        return np.concatenate(frames, axis=0).astype(np.int16, copy=False)

    def frames_to_wav_bytes(self, frames: list[np.ndarray]) -> bytes:
        """Encode int16 capture blocks as an in-memory 16-bit PCM WAV file.

        Args:
            frames: Blocks of shape (samples, channels) as delivered by sounddevice.

        Returns:
            WAV container bytes, or ``b""`` when no samples were captured.
        """
        audio = self.join_frames(frames)
        if len(audio) == 0:
            return b""
        buf = io.BytesIO()
        sf.write(buf, audio, self.sample_rate, format="WAV", subtype="PCM_16")
        return buf.getvalue()

    def duration_seconds(self, frames: list[np.ndarray]) -> float:
        """Captured duration in seconds."""
        return sum(len(f) for f in frames) / self.sample_rate

    def is_silent(self, frames: list[np.ndarray], threshold: float = 0.01) -> bool:
        """Check if captured audio is silence based on RMS energy.

        Args:
            frames: Int16 capture blocks.
            threshold: RMS energy (normalized to [0, 1]) below this is silence.

        Returns:
            True if the audio is silence.
        """
        audio = self.join_frames(frames)
        if len(audio) == 0:
            return True
        normalized = audio.astype(np.float32) / 32768.0
        # Low RMS energy means silence
        rms = np.sqrt(np.mean(normalized**2))
        return float(rms) < threshold
