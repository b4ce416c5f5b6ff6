"""Shared pytest fixtures for the ClinicScribe test suite.

Provides fake microphone capture, fake storage and backend collaborators,
a mock STT provider, and in-memory database setup helpers.
"""

import asyncio
import itertools
import struct
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from src.core.models import (
    AudioSession,
    AudioSessionCreate,
    AudioSessionStatus,
    Report,
    ReportCreate,
    ReportTemplate,
    TranscriptionOutcome,
    TranscriptionResult,
)
from src.services.audio.capture import BaseMediaCapture, BaseMediaStream
from src.services.backend.base import BaseBackend
from src.services.storage.base import BaseBlobStore

TRANSCRIPT_TEXT = "Paciente apresentou melhora na articulação"

# ---------------------------------------------------------------------------
# Capture fakes
# ---------------------------------------------------------------------------


class FakeStream(BaseMediaStream):
    """In-memory microphone stream.

    ``chunks`` are handed out by the next ``collect_chunks()``; ``final``
    by ``flush()``. Set ``flush_gate`` to an ``asyncio.Event`` to hold
    the flush until the test releases it.
    """

    mime_type = "audio/webm;codecs=opus"

    def __init__(self, chunks=None, final=None) -> None:
        self.chunks = list(chunks or [])
        self.final = list(final or [])
        self.flush_gate: asyncio.Event | None = None
        self.flush_error: Exception | None = None
        self.flush_calls = 0
        self.paused = False
        self.released = False

    @property
    def active_tracks(self) -> int:
        return 0 if self.released else 1

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def collect_chunks(self) -> list[bytes]:
        out, self.chunks = self.chunks, []
        return out

    async def flush(self) -> list[bytes]:
        self.flush_calls += 1
        if self.flush_gate is not None:
            await self.flush_gate.wait()
        if self.flush_error is not None:
            raise self.flush_error
        out, self.final = self.final, []
        return out

    def release(self) -> None:
        self.released = True


class FakeCapture(BaseMediaCapture):
    """Hands out ``FakeStream`` objects, or raises ``error`` if set."""

    def __init__(self, chunks=(b"chunk-1", b"chunk-2"), final=(b"tail",), error=None) -> None:
        self.chunks = list(chunks)
        self.final = list(final)
        self.error = error
        # Set to an asyncio.Event to hold acquire() until the test releases it
        self.acquire_gate: asyncio.Event | None = None
        self.streams: list[FakeStream] = []
        # Open tracks observed at the moment of each acquire()
        self.live_at_acquire: list[int] = []

    @property
    def live_tracks(self) -> int:
        return sum(s.active_tracks for s in self.streams)

    async def acquire(self) -> FakeStream:
        self.live_at_acquire.append(self.live_tracks)
        if self.acquire_gate is not None:
            await self.acquire_gate.wait()
        if self.error is not None:
            raise self.error
        stream = FakeStream(chunks=self.chunks, final=self.final)
        self.streams.append(stream)
        return stream


@pytest.fixture
def capture():
    return FakeCapture()


# ---------------------------------------------------------------------------
# Storage / backend fakes
# ---------------------------------------------------------------------------


class FakeBlobStore(BaseBlobStore):
    """Records every payload it receives; fails while ``failures`` is non-empty.

    Set ``upload_gate`` to hold the transfer until the test releases it.
    """

    def __init__(self, audio_url: str = "https://store/abc") -> None:
        self.audio_url = audio_url
        self.received: list[bytes] = []
        self.failures: list[Exception] = []
        self.upload_gate: asyncio.Event | None = None

    async def upload(
        self,
        data,
        *,
        mime_type,
        patient_id,
        appointment_id=None,
        on_progress=None,
    ):
        self.received.append(data)
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        half = len(data) // 2
        if on_progress is not None:
            on_progress(half, len(data))
            on_progress(len(data), len(data))
        return self.audio_url


class FakeBackend(BaseBackend):
    """Session, transcription and report APIs backed by plain lists.

    Each ``*_failures`` list holds exceptions raised by the next calls.
    """

    def __init__(self, session_id: str = "S1", text: str = TRANSCRIPT_TEXT) -> None:
        self.session_id = session_id
        self.text = text
        self.sessions: list[AudioSessionCreate] = []
        self.transcribe_calls: list[tuple[str, str, str | None]] = []
        self.reports: list[ReportCreate] = []
        self.session_failures: list[Exception] = []
        self.transcribe_failures: list[Exception] = []
        self.save_failures: list[Exception] = []
        self.transcribe_gate: asyncio.Event | None = None
        self._report_ids = itertools.count(1)
        self.closed = False

    async def create_session(self, data):
        self.sessions.append(data)
        if self.session_failures:
            raise self.session_failures.pop(0)
        return AudioSession(
            id=self.session_id,
            patient_id=data.patient_id,
            appointment_id=data.appointment_id,
            audio_url=data.audio_url,
            file_size_bytes=data.file_size_bytes,
            duration_seconds=data.duration_seconds,
            status=AudioSessionStatus.uploaded,
            created_at=datetime.now(UTC),
        )

    async def transcribe(self, audio_url, session_id, language=None):
        self.transcribe_calls.append((audio_url, session_id, language))
        if self.transcribe_gate is not None:
            await self.transcribe_gate.wait()
        if self.transcribe_failures:
            raise self.transcribe_failures.pop(0)
        return TranscriptionOutcome(
            success=True,
            session_id=session_id,
            status=AudioSessionStatus.transcribed,
            text=self.text,
            language=language,
        )

    async def create_report(self, data):
        self.reports.append(data)
        if self.save_failures:
            raise self.save_failures.pop(0)
        return Report(
            id=f"R{next(self._report_ids)}",
            patient_id=data.patient_id,
            session_id=data.session_id,
            template_id=data.template_id,
            type=data.type,
            title=data.title,
            content=data.content,
            status=data.status,
            created_at=datetime.now(UTC),
        )

    async def list_templates(self):
        return [
            ReportTemplate(id="resumo", display_name="Resumo de Sessão"),
            ReportTemplate(id="mensal", display_name="Relatório Mensal", report_type="monthly"),
        ]

    async def aclose(self):
        self.closed = True


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def backend():
    return FakeBackend()


# ---------------------------------------------------------------------------
# STT Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_stt():
    """Create a mock STT provider for unit testing.

    Returns:
        AsyncMock: A mock implementing the BaseSTT interface with a
        default transcription result in Portuguese.
    """
    from src.services.transcription.base import BaseSTT

    stt = AsyncMock(spec=BaseSTT)
    stt.transcribe.return_value = TranscriptionResult(
        text=TRANSCRIPT_TEXT,
        language="pt",
        confidence=0.91,
        duration=5.0,
    )
    return stt


# ---------------------------------------------------------------------------
# Audio Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_pcm_bytes():
    """Generate 1 second of 16kHz 16-bit mono silence as PCM bytes."""
    return struct.pack("<" + "h" * 16000, *([0] * 16000))


@pytest.fixture
def sample_wav_bytes(sample_pcm_bytes):
    """Wrap ``sample_pcm_bytes`` in a WAV container."""
    import io
    import wave

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(16000)
        wf.writeframes(sample_pcm_bytes)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with tables, dispose after test."""
    from sqlalchemy.ext.asyncio import create_async_engine

    from src.services.storage import models_db  # noqa: F401
    from src.services.storage.database import Base

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Yield an AsyncSession bound to the test engine; rolls back after test."""
    from sqlalchemy.ext.asyncio import async_sessionmaker

    factory = async_sessionmaker(db_engine, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def repository(db_session):
    """Return a ClinicRepository bound to the test session."""
    from src.services.storage.repository import ClinicRepository

    return ClinicRepository(db_session)


@pytest.fixture
async def db(db_engine):
    """Point ``get_session()`` at the in-memory engine for the test."""
    from src.services.storage import database

    database._engine = db_engine
    database._session_factory = None
    yield db_engine
    database.reset_engine()
