"""Whisper STT implementation using faster-whisper.

The WhisperModel is loaded lazily and cached at module level to avoid
repeated initialization overhead. Recorded containers are decoded by
faster-whisper directly from memory.
"""

import asyncio
import io
import logging
import math

from faster_whisper import WhisperModel

from src.core.config import get_settings
from src.core.exceptions import TranscriptionError
from src.core.models import TranscriptionResult, TranscriptionSegment
from src.services.transcription.base import BaseSTT

logger = logging.getLogger(__name__)

_model_cache: WhisperModel | None = None


class WhisperSTT(BaseSTT):
    """Speech-to-text provider using faster-whisper (CTranslate2).

    Args:
        model_size: Whisper model size (tiny, base, small, medium, large-v3).
        device: Computation device ("cpu" or "cuda").
        compute_type: CTranslate2 compute type ("int8", "float16", etc.).
        settings: Optional Settings instance (defaults to get_settings()).
    """

    def __init__(
        self,
        model_size: str | None = None,
        device: str | None = None,
        compute_type: str | None = None,
        settings=None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model_size = model_size or self._settings.whisper_model
        self._device = device or self._settings.whisper_device
        self._compute_type = compute_type or self._settings.whisper_compute_type

    def _get_model(self) -> WhisperModel:
        """Return the cached WhisperModel, loading it on first use."""
        global _model_cache  # noqa: PLW0603
        if _model_cache is None:
            logger.info(
                "Loading Whisper model: %s (device=%s, compute=%s)",
                self._model_size,
                self._device,
                self._compute_type,
            )
            _model_cache = WhisperModel(
                self._model_size,
                device=self._device,
                compute_type=self._compute_type,
            )
        return _model_cache

    def _run_transcription(
        self,
        audio: bytes,
        language: str | None = None,
        beam_size: int = 5,
        vad_filter: bool = True,
    ) -> tuple:
        """Run synchronous transcription (CPU-bound).

        Must be called via asyncio.to_thread(). The segment iterator is
        materialized into a list inside this function to avoid CTranslate2
        thread-safety issues.

        Returns:
            Tuple of (list[segment_objects], info_object).
        """
        model = self._get_model()
        segments_iter, info = model.transcribe(
            io.BytesIO(audio),
            language=language,
            beam_size=beam_size,
            vad_filter=vad_filter,
        )
        segments = list(segments_iter)
        return segments, info

    @staticmethod
    def _logprob_to_confidence(avg_logprob: float) -> float:
        """Convert average log probability to a 0-1 confidence score."""
        return max(0.0, min(1.0, math.exp(avg_logprob)))

    @staticmethod
    def _segments_to_models(segments) -> list[TranscriptionSegment]:
        """Convert faster-whisper segment objects to Pydantic models."""
        return [
            TranscriptionSegment(
                text=seg.text.strip(),
                start=seg.start,
                end=seg.end,
                avg_logprob=seg.avg_logprob,
                no_speech_prob=seg.no_speech_prob,
            )
            for seg in segments
            if seg.text.strip()
        ]

    async def transcribe(
        self,
        audio: bytes,
        language: str | None = None,
        mime_type: str | None = None,
    ) -> TranscriptionResult:
        try:
            segments, info = await asyncio.to_thread(
                self._run_transcription,
                audio,
                language=language,
            )
        except Exception as exc:
            raise TranscriptionError(detail=f"Whisper transcription failed: {exc}") from exc

        segment_models = self._segments_to_models(segments)
        full_text = " ".join(seg.text for seg in segment_models)

        avg_confidence = 0.0
        if segment_models:
            avg_logprob = sum(s.avg_logprob for s in segment_models) / len(segment_models)
            avg_confidence = self._logprob_to_confidence(avg_logprob)

        logger.debug(
            "Whisper transcribed %.1fs of %s audio (%d segments)",
            info.duration,
            mime_type or "unknown",
            len(segment_models),
        )
        return TranscriptionResult(
            text=full_text,
            language=info.language or language or "unknown",
            language_probability=info.language_probability,
            confidence=avg_confidence,
            duration=info.duration,
            segments=segment_models,
        )
