"""
CRUD repository for the ClinicScribe tables.

``ClinicRepository`` receives an ``AsyncSession`` and provides all
data-access methods.  It calls ``flush()`` rather than ``commit()`` so
that transaction boundaries are controlled by the caller (typically
:func:`get_session`).
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core import models
from src.core.exceptions import ReportNotFoundError, SessionNotFoundError
from src.services.storage.models_db import AudioSession, Report, Transcript

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ORM -> API model conversion
# ---------------------------------------------------------------------------


def to_audio_session(row: AudioSession) -> models.AudioSession:
    """Convert an ORM ``AudioSession`` to its API model."""
    return models.AudioSession(
        id=row.id,
        patient_id=row.patient_id,
        appointment_id=row.appointment_id,
        audio_url=row.audio_url,
        file_size_bytes=row.file_size_bytes,
        duration_seconds=row.duration_seconds,
        status=models.AudioSessionStatus(row.status),
        language=row.language,
        error=row.error,
        created_at=row.created_at,
    )


def to_transcript(row: Transcript) -> models.Transcript:
    return models.Transcript(
        session_id=row.session_id,
        text=row.text,
        language=row.language,
        created_at=row.created_at,
    )


def to_report(row: Report) -> models.Report:
    return models.Report(
        id=row.id,
        patient_id=row.patient_id,
        session_id=row.session_id,
        template_id=row.template_id,
        type=models.ReportType(row.type),
        title=row.title,
        content=row.content,
        status=models.ReportStatus(row.status),
        created_at=row.created_at,
    )


class ClinicRepository:
    """Data-access layer for audio sessions, transcripts and reports.

    Args:
        session: An active SQLAlchemy ``AsyncSession``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Audio sessions
    # ------------------------------------------------------------------

    async def create_session(self, data: models.AudioSessionCreate) -> AudioSession:
        """Create and return a new audio session with status *uploaded*."""
        row = AudioSession(
            patient_id=data.patient_id,
            appointment_id=data.appointment_id,
            audio_url=data.audio_url,
            file_size_bytes=data.file_size_bytes,
            duration_seconds=data.duration_seconds,
            status=models.AudioSessionStatus.uploaded.value,
        )
        self._session.add(row)
        await self._session.flush()
        logger.info("Audio session %s created for patient %s", row.id, row.patient_id)
        return row

    async def get_session(self, session_id: str) -> AudioSession:
        """Return an audio session by ID or raise :class:`SessionNotFoundError`."""
        result = await self._session.execute(
            select(AudioSession).where(AudioSession.id == session_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    async def list_sessions(
        self,
        patient_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AudioSession]:
        """Return audio sessions newest first, optionally for one patient."""
        stmt = (
            select(AudioSession)
            .order_by(AudioSession.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        if patient_id is not None:
            stmt = stmt.where(AudioSession.patient_id == patient_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_session_status(
        self,
        session_id: str,
        status: models.AudioSessionStatus,
        *,
        language: str | None = None,
        error: str | None = None,
    ) -> AudioSession:
        """Set the transcription status; ``error`` is cleared unless given."""
        row = await self.get_session(session_id)
        row.status = models.AudioSessionStatus(status).value
        if language is not None:
            row.language = language
        row.error = error
        await self._session.flush()
        return row

    # ------------------------------------------------------------------
    # Transcripts
    # ------------------------------------------------------------------

    async def create_transcript(
        self,
        session_id: str,
        text: str,
        language: str,
        confidence: float = 0.0,
    ) -> Transcript:
        """Store the transcript for a session, replacing any previous one."""
        existing = await self.get_transcript(session_id)
        if existing is not None:
            existing.text = text
            existing.language = language
            existing.confidence = confidence
            await self._session.flush()
            return existing
        row = Transcript(
            session_id=session_id,
            text=text,
            language=language,
            confidence=confidence,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_transcript(self, session_id: str) -> Transcript | None:
        result = await self._session.execute(
            select(Transcript).where(Transcript.session_id == session_id)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def create_report(self, data: models.ReportCreate) -> Report:
        """Create and return a report. The referenced session, if any, must exist."""
        if data.session_id is not None:
            await self.get_session(data.session_id)
        row = Report(
            patient_id=data.patient_id,
            session_id=data.session_id,
            template_id=data.template_id,
            type=data.type.value,
            title=data.title,
            content=data.content,
            status=data.status.value,
        )
        self._session.add(row)
        await self._session.flush()
        logger.info("Report %s (%s) created for patient %s", row.id, row.type, row.patient_id)
        return row

    async def get_report(self, report_id: str) -> Report:
        """Return a report by ID or raise :class:`ReportNotFoundError`."""
        result = await self._session.execute(select(Report).where(Report.id == report_id))
        row = result.scalar_one_or_none()
        if row is None:
            raise ReportNotFoundError(report_id)
        return row

    async def list_reports(
        self,
        patient_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Report]:
        """Return reports newest first, optionally for one patient."""
        stmt = select(Report).order_by(Report.created_at.desc()).limit(limit).offset(offset)
        if patient_id is not None:
            stmt = stmt.where(Report.patient_id == patient_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
