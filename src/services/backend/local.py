"""In-process backend: the same repository and transcription service the API uses."""

import logging

from sqlalchemy.exc import SQLAlchemyError

from src.core.config import get_settings
from src.core.exceptions import SaveError, SessionCreateError, SessionNotFoundError
from src.core.models import (
    AudioSession,
    AudioSessionCreate,
    Report,
    ReportCreate,
    ReportTemplate,
    TranscriptionOutcome,
)
from src.services.backend.base import BaseBackend
from src.services.storage.database import get_session
from src.services.storage.repository import ClinicRepository, to_audio_session, to_report
from src.services.templates import get_templates
from src.services.transcription import BaseSTT, create_stt
from src.services.transcription.service import TranscriptionService

logger = logging.getLogger(__name__)


class LocalBackend(BaseBackend):
    """Backend collaborators without HTTP.

    Args:
        stt: Engine for transcription (default: configured provider).
        service: Preconfigured transcription service (overrides *stt*).
    """

    def __init__(
        self,
        stt: BaseSTT | None = None,
        service: TranscriptionService | None = None,
    ) -> None:
        if service is None:
            service = TranscriptionService(stt or create_stt(get_settings().whisper_provider))
        self._service = service

    async def create_session(self, data: AudioSessionCreate) -> AudioSession:
        try:
            async with get_session() as db:
                row = await ClinicRepository(db).create_session(data)
                return to_audio_session(row)
        except SQLAlchemyError as exc:
            logger.exception("Session creation failed")
            raise SessionCreateError(data.audio_url, str(exc)) from exc

    async def transcribe(
        self,
        audio_url: str,
        session_id: str,
        language: str | None = None,
    ) -> TranscriptionOutcome:
        return await self._service.transcribe_session(session_id, audio_url, language)

    async def create_report(self, data: ReportCreate) -> Report:
        try:
            async with get_session() as db:
                row = await ClinicRepository(db).create_report(data)
                return to_report(row)
        except (SQLAlchemyError, SessionNotFoundError) as exc:
            logger.exception("Report save failed")
            raise SaveError(f"Report could not be saved: {exc}") from exc

    async def list_templates(self) -> list[ReportTemplate]:
        return get_templates()
