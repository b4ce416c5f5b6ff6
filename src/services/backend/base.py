"""
Abstract contracts for the backend collaborators the pipeline consumes.

Implementations: ``BackendClient`` (HTTP) and ``LocalBackend``
(in-process). Both translate their failures into the domain errors named
on each method.
"""

from abc import ABC, abstractmethod

from src.core.models import (
    AudioSession,
    AudioSessionCreate,
    Report,
    ReportCreate,
    ReportTemplate,
    TranscriptionOutcome,
)


class BaseSessionAPI(ABC):
    """Creates persisted audio-session records."""

    @abstractmethod
    async def create_session(self, data: AudioSessionCreate) -> AudioSession:
        """Create exactly one session for an uploaded recording.

        Raises:
            SessionCreateError: Carrying ``data.audio_url`` for a retry.
        """


class BaseTranscriptionAPI(ABC):
    """Runs speech-to-text against a stored session."""

    @abstractmethod
    async def transcribe(
        self,
        audio_url: str,
        session_id: str,
        language: str | None = None,
    ) -> TranscriptionOutcome:
        """Transcribe the session's audio.

        Raises:
            TranscriptionPendingError: An attempt is already running.
            TranscriptionError: The engine failed or timed out.
        """


class BaseReportAPI(ABC):
    """Persists reports and exposes the template catalog."""

    @abstractmethod
    async def create_report(self, data: ReportCreate) -> Report:
        """Persist a report.

        Raises:
            SaveError: If the report could not be stored.
        """

    @abstractmethod
    async def list_templates(self) -> list[ReportTemplate]:
        """Return the selectable report templates."""


class BaseBackend(BaseSessionAPI, BaseTranscriptionAPI, BaseReportAPI):
    """All three collaborators behind one object."""

    async def aclose(self) -> None:
        """Release held resources. No-op by default."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
