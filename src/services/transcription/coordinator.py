"""
Client-side transcription coordinator.

Calls the Transcription API for a registered session. At most one call
per session id is in flight: a repeated request while one is pending is
coalesced onto it, so the API is invoked once and every caller receives
the same result.
"""

import asyncio
import logging
from datetime import UTC, datetime

from src.core.config import get_settings
from src.core.exceptions import TranscriptionError, TranscriptionErrorKind
from src.core.models import Transcript
from src.services.backend.base import BaseTranscriptionAPI

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = object()


class TranscriptionCoordinator:
    """Runs and de-duplicates transcription requests.

    Args:
        api: Transcription API collaborator.
        timeout: Client-side bound in seconds; None disables it. Defaults
            to ``settings.transcription_timeout_seconds``.
        default_language: Hint sent when the caller gives none ("pt").
    """

    def __init__(
        self,
        api: BaseTranscriptionAPI,
        timeout=_DEFAULT_TIMEOUT,
        default_language: str | None = None,
    ) -> None:
        settings = get_settings()
        self._api = api
        self._timeout = (
            settings.transcription_timeout_seconds if timeout is _DEFAULT_TIMEOUT else timeout
        )
        self._default_language = default_language or settings.default_language
        self._in_flight: dict[str, asyncio.Task] = {}

    def is_pending(self, session_id: str) -> bool:
        """True while a call for *session_id* is in flight."""
        task = self._in_flight.get(session_id)
        return task is not None and not task.done()

    async def transcribe(
        self,
        session_id: str,
        audio_url: str,
        language: str | None = None,
    ) -> Transcript:
        """Transcribe a registered session.

        Raises:
            TranscriptionError: ``backend``/``timeout``, or
                ``TranscriptionPendingError`` from the backend. The session and
                its audio stay valid; transcription alone may be retried.
        """
        task = self._in_flight.get(session_id)
        if task is None:
            task = asyncio.create_task(
                self._call(session_id, audio_url, language or self._default_language)
            )
            self._in_flight[session_id] = task
            task.add_done_callback(lambda t: self._forget(session_id, t))
        else:
            logger.info("Transcription for session %s already pending; joining it", session_id)
        return await asyncio.shield(task)

    async def close(self) -> None:
        """Cancel every in-flight call."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()

    def _forget(self, session_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(session_id) is task:
            del self._in_flight[session_id]

    async def _call(self, session_id: str, audio_url: str, language: str) -> Transcript:
        logger.info("Requesting transcription for session %s", session_id)
        try:
            if self._timeout is None:
                outcome = await self._api.transcribe(audio_url, session_id, language)
            else:
                outcome = await asyncio.wait_for(
                    self._api.transcribe(audio_url, session_id, language),
                    timeout=self._timeout,
                )
        except TimeoutError as exc:
            raise TranscriptionError(
                detail=(
                    f"Transcription did not finish within {self._timeout:.0f}s. "
                    "The audio and session are saved; try transcribing again."
                ),
                kind=TranscriptionErrorKind.timeout,
                session_id=session_id,
            ) from exc
        except TranscriptionError:
            raise
        except Exception as exc:
            logger.exception("Transcription call for session %s failed", session_id)
            raise TranscriptionError(
                detail=f"Transcription failed: {exc}", session_id=session_id
            ) from exc

        if not outcome.success or not outcome.text:
            raise TranscriptionError(
                detail=outcome.error or "Transcription failed", session_id=session_id
            )
        return Transcript(
            session_id=session_id,
            text=outcome.text,
            language=outcome.language or language,
            created_at=datetime.now(UTC),
        )
