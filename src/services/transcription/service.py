"""
Server-side transcription of stored audio sessions.

Moves a session ``uploaded|failed -> transcribing -> transcribed|failed``
and persists the transcript. Only one attempt per session runs at a time:
a second request while one is in flight is rejected with
``TranscriptionPendingError``. A session still marked ``transcribing``
with no attempt running (the process stopped mid-run) is transcribed again.
"""

import asyncio
import logging

from src.core.config import get_settings
from src.core.exceptions import (
    TranscriptionError,
    TranscriptionErrorKind,
    TranscriptionPendingError,
)
from src.core.models import AudioSessionStatus, TranscriptionOutcome
from src.services.storage.database import get_session
from src.services.storage.repository import ClinicRepository
from src.services.transcription.base import BaseSTT
from src.services.transcription.fetcher import AudioFetcher

logger = logging.getLogger(__name__)

# Session ids with an attempt running in this process.
_in_flight: set[str] = set()

_DEFAULT_TIMEOUT = object()


class TranscriptionService:
    """Runs an STT engine against a stored session and records the outcome.

    Args:
        stt: Speech-to-text engine.
        fetcher: Resolves ``audio_url`` to bytes (default: local store + HTTP).
        timeout: Bound on one engine call in seconds; None disables it.
            Defaults to ``settings.stt_timeout_seconds``.
    """

    def __init__(
        self,
        stt: BaseSTT,
        fetcher: AudioFetcher | None = None,
        timeout=_DEFAULT_TIMEOUT,
    ) -> None:
        self._stt = stt
        self._fetcher = fetcher or AudioFetcher()
        self._timeout = (
            get_settings().stt_timeout_seconds if timeout is _DEFAULT_TIMEOUT else timeout
        )

    async def transcribe_session(
        self,
        session_id: str,
        audio_url: str | None = None,
        language: str | None = None,
    ) -> TranscriptionOutcome:
        """Transcribe one session.

        A session already ``transcribed`` returns its stored transcript
        without calling the engine again.

        Raises:
            SessionNotFoundError: Unknown session id.
            TranscriptionPendingError: An attempt is already running.
            TranscriptionError: Engine failure, timeout or no speech; the
                session is left ``failed`` and may be retried.
        """
        if session_id in _in_flight:
            raise TranscriptionPendingError(session_id)
        _in_flight.add(session_id)
        try:
            return await self._transcribe(session_id, audio_url, language)
        finally:
            _in_flight.discard(session_id)

    async def _transcribe(
        self,
        session_id: str,
        audio_url: str | None,
        language: str | None,
    ) -> TranscriptionOutcome:
        async with get_session() as db:
            repo = ClinicRepository(db)
            row = await repo.get_session(session_id)
            if row.status == AudioSessionStatus.transcribed:
                transcript = await repo.get_transcript(session_id)
                if transcript is not None:
                    logger.info("Session %s already transcribed", session_id)
                    return TranscriptionOutcome(
                        success=True,
                        session_id=session_id,
                        status=AudioSessionStatus.transcribed,
                        text=transcript.text,
                        language=transcript.language,
                    )
            if row.status == AudioSessionStatus.transcribing:
                # No attempt is running here, so an earlier process died mid-run
                logger.warning(
                    "Session %s was left transcribing by an interrupted attempt; retrying",
                    session_id,
                )
            if audio_url and audio_url != row.audio_url:
                logger.warning(
                    "Session %s: requested audio_url differs from stored one; using stored",
                    session_id,
                )
            stored_url = row.audio_url
            await repo.update_session_status(session_id, AudioSessionStatus.transcribing)

        logger.info("Transcribing session %s (language=%s)", session_id, language or "auto")
        try:
            result = await self._run(stored_url, language)
            text = result.text.strip()
            if not text:
                raise TranscriptionError(detail="No speech detected in the recording")
        except TranscriptionError as exc:
            await self._mark_failed(session_id, exc.detail)
            raise TranscriptionError(exc.detail, kind=exc.kind, session_id=session_id) from exc
        except asyncio.CancelledError:
            await self._mark_failed(session_id, "Transcription was cancelled")
            raise
        except Exception as exc:
            logger.exception("Unexpected transcription failure for session %s", session_id)
            await self._mark_failed(session_id, str(exc))
            raise TranscriptionError(
                detail=f"Transcription failed: {exc}", session_id=session_id
            ) from exc

        detected = result.language if result.language != "unknown" else (language or "unknown")
        async with get_session() as db:
            repo = ClinicRepository(db)
            await repo.create_transcript(session_id, text, detected, result.confidence)
            await repo.update_session_status(
                session_id, AudioSessionStatus.transcribed, language=detected
            )

        logger.info("Session %s transcribed (%d chars)", session_id, len(text))
        return TranscriptionOutcome(
            success=True,
            session_id=session_id,
            status=AudioSessionStatus.transcribed,
            text=text,
            language=detected,
        )

    async def get_transcription(self, session_id: str) -> TranscriptionOutcome:
        """Return the current transcription state of a session."""
        async with get_session() as db:
            repo = ClinicRepository(db)
            row = await repo.get_session(session_id)
            transcript = await repo.get_transcript(session_id)
            status = AudioSessionStatus(row.status)
            if status == AudioSessionStatus.transcribed and transcript is not None:
                return TranscriptionOutcome(
                    success=True,
                    session_id=session_id,
                    status=status,
                    text=transcript.text,
                    language=transcript.language,
                )
            return TranscriptionOutcome(
                success=False,
                session_id=session_id,
                status=status,
                language=row.language,
                error=row.error,
            )

    async def _run(self, audio_url: str, language: str | None):
        audio = await self._fetcher.fetch(audio_url)
        call = self._stt.transcribe(audio.data, language=language, mime_type=audio.mime_type)
        if self._timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except TimeoutError as exc:
            raise TranscriptionError(
                detail=f"Transcription timed out after {self._timeout:.0f}s",
                kind=TranscriptionErrorKind.timeout,
            ) from exc

    async def _mark_failed(self, session_id: str, error: str) -> None:
        try:
            async with get_session() as db:
                await ClinicRepository(db).update_session_status(
                    session_id, AudioSessionStatus.failed, error=error
                )
        except Exception:
            logger.exception("Could not mark session %s as failed", session_id)
        else:
            logger.warning("Session %s transcription failed: %s", session_id, error)
