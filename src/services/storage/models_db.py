"""
SQLAlchemy ORM models for the ClinicScribe schema.

Tables: ``audio_sessions``, ``transcripts``, ``reports``.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.services.storage.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class AudioSession(Base):
    """A stored recording awaiting or holding a transcription."""

    __tablename__ = "audio_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    appointment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    audio_url: Mapped[str] = mapped_column(String(1024))
    file_size_bytes: Mapped[int] = mapped_column(default=0)
    duration_seconds: Mapped[int] = mapped_column(default=0)
    status: Mapped[str] = mapped_column(String(20), default="uploaded", index=True)
    language: Mapped[str | None] = mapped_column(String(10), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    transcript: Mapped["Transcript | None"] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        lazy="selectin",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<AudioSession id={self.id} status={self.status!r}>"


class Transcript(Base):
    """Full-text transcription of one audio session."""

    __tablename__ = "transcripts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("audio_sessions.id"), unique=True)
    text: Mapped[str] = mapped_column(Text, default="")
    language: Mapped[str] = mapped_column(String(10), default="unknown")
    confidence: Mapped[float] = mapped_column(default=0.0)
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))

    session: Mapped["AudioSession"] = relationship(back_populates="transcript")

    def __repr__(self) -> str:
        return f"<Transcript id={self.id} session={self.session_id}>"


class Report(Base):
    """A clinician-approved report."""

    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    session_id: Mapped[str | None] = mapped_column(
        ForeignKey("audio_sessions.id"), nullable=True, index=True
    )
    template_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(20), default="evolution")
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="approved")
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<Report id={self.id} type={self.type!r} status={self.status!r}>"
