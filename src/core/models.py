"""
Pydantic v2 request / response models used across the API layer and
the capture pipeline.

Recording (ephemeral audio), AudioSession, Transcript, Report, templates,
transcription results, Error.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: datetime


# ---------------------------------------------------------------------------
# Recording (client-side, never persisted)
# ---------------------------------------------------------------------------


class RecorderState(StrEnum):
    """Possible states for the microphone recorder."""

    idle = "idle"
    recording = "recording"
    paused = "paused"
    stopping = "stopping"
    stopped = "stopped"


@dataclass(frozen=True)
class Recording:
    """A finalized take: opaque container bytes plus duration and MIME type."""

    data: bytes
    duration_seconds: int
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class UploadResponse(BaseModel):
    """PUT /audio/files response."""

    audio_url: str
    file_size_bytes: int
    mime_type: str


# ---------------------------------------------------------------------------
# Audio session
# ---------------------------------------------------------------------------


class AudioSessionStatus(StrEnum):
    """Transcription lifecycle of a stored recording."""

    uploaded = "uploaded"
    transcribing = "transcribing"
    transcribed = "transcribed"
    failed = "failed"


class AudioSessionCreate(BaseModel):
    """POST /audio/sessions request body."""

    patient_id: str = Field(min_length=1)
    audio_url: str = Field(min_length=1)
    appointment_id: str | None = None
    file_size_bytes: int = Field(default=0, ge=0)
    duration_seconds: int = Field(default=0, ge=0)


class AudioSession(BaseModel):
    """Standard audio session representation."""

    id: str
    patient_id: str
    appointment_id: str | None = None
    audio_url: str
    file_size_bytes: int = 0
    duration_seconds: int = 0
    status: AudioSessionStatus
    language: str | None = None
    error: str | None = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------


class TranscriptionSegment(BaseModel):
    """A single transcription segment with timestamps."""

    text: str
    start: float
    end: float
    avg_logprob: float = 0.0
    no_speech_prob: float = 0.0


class TranscriptionResult(BaseModel):
    """Complete transcription result returned by an STT engine."""

    text: str
    language: str = "unknown"
    language_probability: float = 0.0
    confidence: float = 0.0
    duration: float = 0.0
    segments: list[TranscriptionSegment] = Field(default_factory=list)


class TranscriptionRequest(BaseModel):
    """POST /audio/transcribe request body."""

    audio_url: str = Field(min_length=1)
    audio_session_id: str = Field(min_length=1)
    language: str = "pt"


class TranscriptionOutcome(BaseModel):
    """Result of one transcription attempt as seen by the client."""

    success: bool
    session_id: str
    status: AudioSessionStatus
    text: str | None = None
    language: str | None = None
    error: str | None = None


class Transcript(BaseModel):
    """Persisted transcript, 1:1 with an audio session."""

    session_id: str
    text: str
    language: str
    created_at: datetime


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportType(StrEnum):
    """Clinical report categories."""

    evolution = "evolution"
    evaluation = "evaluation"
    discharge = "discharge"
    monthly = "monthly"


class ReportStatus(StrEnum):
    """Report workflow states."""

    draft = "draft"
    pending_review = "pending_review"
    reviewed = "reviewed"
    approved = "approved"
    sent = "sent"


class ReportTemplate(BaseModel):
    """A selectable report template."""

    id: str
    display_name: str = ""
    report_type: ReportType = ReportType.evolution


@dataclass
class ReportDraft:
    """Editable buffer owned by the review stage; never auto-persisted."""

    template_id: str
    editable_text: str


class ReportCreate(BaseModel):
    """POST /reports request body."""

    patient_id: str = Field(min_length=1)
    session_id: str | None = None
    template_id: str | None = None
    type: ReportType = ReportType.evolution
    title: str | None = None
    content: str = Field(min_length=1)
    status: ReportStatus = ReportStatus.approved


class Report(BaseModel):
    """Standard report representation."""

    id: str
    patient_id: str
    session_id: str | None = None
    template_id: str | None = None
    type: ReportType
    title: str | None = None
    content: str
    status: ReportStatus
    created_at: datetime


# ---------------------------------------------------------------------------
# Error
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error envelope returned by the API."""

    detail: str
    code: str
    timestamp: str
