"""
Abstract base class for Speech-to-Text providers.

All STT implementations (faster-whisper local, Hugging Face inference API)
must implement this interface, enabling provider-agnostic transcription in
the service layer.
"""

from abc import ABC, abstractmethod

from src.core.models import TranscriptionResult


class BaseSTT(ABC):
    """Interface that every STT provider must implement."""

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        language: str | None = None,
        mime_type: str | None = None,
    ) -> TranscriptionResult:
        """Transcribe a complete recorded container to text.

        Args:
            audio: Container bytes exactly as recorded (WAV, WebM, ...).
            language: ISO 639-1 hint, or None for auto-detect.
            mime_type: Content type of *audio*, when known.

        Returns:
            TranscriptionResult with text, language, confidence and segments.

        Raises:
            TranscriptionError: If the engine fails.
        """
