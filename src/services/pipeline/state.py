"""
Pipeline state and its reducer.

``PipelineState`` is immutable; every stage change goes through
``advance(state, event)``, which refuses any event not allowed from the
current stage. Durable artifacts (``audio_url``, ``session``,
``transcript``) survive every later stage, failures included. The held
Recording is dropped once the upload succeeds.
"""

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import ClassVar

from src.core.exceptions import (
    ClinicScribeError,
    DeviceError,
    InvalidTransitionError,
    UploadError,
    UploadErrorKind,
)
from src.core.models import AudioSession, Recording, Report, Transcript


class Stage(StrEnum):
    idle = "idle"
    recording = "recording"
    recorded = "recorded"
    uploading = "uploading"
    upload_failed = "upload_failed"
    uploaded = "uploaded"
    registering = "registering"
    registration_failed = "registration_failed"
    registered = "registered"
    transcribing = "transcribing"
    transcription_failed = "transcription_failed"
    reviewing = "reviewing"
    saving = "saving"
    save_failed = "save_failed"
    saved = "saved"
    cancelled = "cancelled"


class RecoveryAction(StrEnum):
    """What the user can do to continue after a failure."""

    retry_start = "retry_start"
    restart_recording = "restart_recording"
    retry_upload = "retry_upload"
    retry_registration = "retry_registration"
    retry_transcription = "retry_transcription"
    retry_save = "retry_save"


FAILED_STAGES = frozenset(
    {
        Stage.upload_failed,
        Stage.registration_failed,
        Stage.transcription_failed,
        Stage.save_failed,
    }
)

_RETRY_ACTIONS = {
    Stage.upload_failed: RecoveryAction.retry_upload,
    Stage.registration_failed: RecoveryAction.retry_registration,
    Stage.transcription_failed: RecoveryAction.retry_transcription,
    Stage.save_failed: RecoveryAction.retry_save,
}

# Rejections that re-uploading the same bytes cannot fix
_NON_RETRYABLE_UPLOAD = frozenset(
    {UploadErrorKind.empty, UploadErrorKind.oversize, UploadErrorKind.invalid_type}
)


@dataclass(frozen=True)
class PipelineState:
    stage: Stage = Stage.idle
    recording: Recording | None = None
    file_size_bytes: int = 0
    duration_seconds: int = 0
    upload_progress: int = 0
    audio_url: str | None = None
    session: AudioSession | None = None
    transcript: Transcript | None = None
    report: Report | None = None
    error: ClinicScribeError | None = None

    @property
    def failed(self) -> bool:
        return self.stage in FAILED_STAGES

    @property
    def recovery_action(self) -> RecoveryAction | None:
        """The action that continues the pipeline after ``error``, if any."""
        if self.error is None:
            return None
        if self.stage is Stage.idle or isinstance(self.error, DeviceError):
            return RecoveryAction.retry_start
        if (
            self.stage is Stage.upload_failed
            and isinstance(self.error, UploadError)
            and self.error.kind in _NON_RETRYABLE_UPLOAD
        ):
            return RecoveryAction.restart_recording
        return _RETRY_ACTIONS.get(self.stage)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    sources: ClassVar[frozenset[Stage]] = frozenset()

    def apply(self, state: PipelineState) -> PipelineState:
        raise NotImplementedError


# Stages a new take (recorded or loaded from a file) may begin from
_NEW_TAKE_SOURCES = frozenset({Stage.idle, Stage.recorded, Stage.upload_failed, Stage.cancelled})


@dataclass(frozen=True)
class DeviceFailed(Event):
    """The microphone could not be acquired for a new take.

    A take that is still waiting for upload is kept, so the user can
    retry the upload instead of recording again.
    """

    error: ClinicScribeError
    sources: ClassVar[frozenset[Stage]] = _NEW_TAKE_SOURCES

    def apply(self, state):
        if state.recording is not None and state.stage in (Stage.recorded, Stage.upload_failed):
            return replace(state, error=self.error)
        return PipelineState(stage=Stage.idle, error=self.error)


@dataclass(frozen=True)
class RecordingStarted(Event):
    sources: ClassVar[frozenset[Stage]] = _NEW_TAKE_SOURCES

    def apply(self, state):
        return PipelineState(stage=Stage.recording)


@dataclass(frozen=True)
class RecordingLoaded(Event):
    """An existing audio file replaces the microphone take."""

    recording: Recording
    sources: ClassVar[frozenset[Stage]] = _NEW_TAKE_SOURCES

    def apply(self, state):
        return PipelineState(
            stage=Stage.recorded,
            recording=self.recording,
            file_size_bytes=self.recording.size,
            duration_seconds=self.recording.duration_seconds,
        )


@dataclass(frozen=True)
class RecordingRestarted(Event):
    sources: ClassVar[frozenset[Stage]] = frozenset(
        {Stage.recording, Stage.recorded, Stage.upload_failed}
    )

    def apply(self, state):
        return PipelineState(stage=Stage.recording)


@dataclass(frozen=True)
class RecordingDiscarded(Event):
    sources: ClassVar[frozenset[Stage]] = frozenset(
        {Stage.recording, Stage.recorded, Stage.upload_failed}
    )

    def apply(self, state):
        return PipelineState()


@dataclass(frozen=True)
class RecordingStopped(Event):
    recording: Recording
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.recording})

    def apply(self, state):
        return replace(
            state,
            stage=Stage.recorded,
            recording=self.recording,
            file_size_bytes=self.recording.size,
            duration_seconds=self.recording.duration_seconds,
            error=None,
        )


@dataclass(frozen=True)
class UploadStarted(Event):
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.recorded, Stage.upload_failed})

    def apply(self, state):
        return replace(state, stage=Stage.uploading, upload_progress=0, error=None)


@dataclass(frozen=True)
class UploadProgressed(Event):
    percent: int
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.uploading})

    def apply(self, state):
        return replace(state, upload_progress=max(state.upload_progress, min(self.percent, 100)))


@dataclass(frozen=True)
class UploadSucceeded(Event):
    audio_url: str
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.uploading})

    def apply(self, state):
        return replace(
            state,
            stage=Stage.uploaded,
            audio_url=self.audio_url,
            recording=None,
            upload_progress=100,
        )


@dataclass(frozen=True)
class UploadFailed(Event):
    error: ClinicScribeError
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.uploading})

    def apply(self, state):
        return replace(state, stage=Stage.upload_failed, error=self.error)


@dataclass(frozen=True)
class RegistrationStarted(Event):
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.uploaded, Stage.registration_failed})

    def apply(self, state):
        return replace(state, stage=Stage.registering, error=None)


@dataclass(frozen=True)
class RegistrationSucceeded(Event):
    session: AudioSession
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.registering})

    def apply(self, state):
        return replace(state, stage=Stage.registered, session=self.session)


@dataclass(frozen=True)
class RegistrationFailed(Event):
    error: ClinicScribeError
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.registering})

    def apply(self, state):
        return replace(state, stage=Stage.registration_failed, error=self.error)


@dataclass(frozen=True)
class TranscriptionStarted(Event):
    sources: ClassVar[frozenset[Stage]] = frozenset(
        {Stage.registered, Stage.transcription_failed}
    )

    def apply(self, state):
        return replace(state, stage=Stage.transcribing, error=None)


@dataclass(frozen=True)
class TranscriptionSucceeded(Event):
    transcript: Transcript
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.transcribing})

    def apply(self, state):
        return replace(state, stage=Stage.reviewing, transcript=self.transcript)


@dataclass(frozen=True)
class TranscriptionFailed(Event):
    error: ClinicScribeError
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.transcribing})

    def apply(self, state):
        return replace(state, stage=Stage.transcription_failed, error=self.error)


@dataclass(frozen=True)
class SaveStarted(Event):
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.reviewing, Stage.save_failed})

    def apply(self, state):
        return replace(state, stage=Stage.saving, error=None)


@dataclass(frozen=True)
class SaveSucceeded(Event):
    report: Report
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.saving})

    def apply(self, state):
        return replace(state, stage=Stage.saved, report=self.report)


@dataclass(frozen=True)
class SaveFailed(Event):
    error: ClinicScribeError
    sources: ClassVar[frozenset[Stage]] = frozenset({Stage.saving})

    def apply(self, state):
        return replace(state, stage=Stage.save_failed, error=self.error)


@dataclass(frozen=True)
class Cancelled(Event):
    sources: ClassVar[frozenset[Stage]] = frozenset(
        set(Stage) - {Stage.saving, Stage.saved, Stage.cancelled}
    )

    def apply(self, state):
        return replace(state, stage=Stage.cancelled, recording=None, error=None)


def allowed(state: PipelineState, event_type: type[Event]) -> bool:
    """True if *event_type* may be applied from ``state.stage``."""
    return state.stage in event_type.sources


def advance(state: PipelineState, event: Event) -> PipelineState:
    """Apply *event* to *state*.

    Raises:
        InvalidTransitionError: If the event is not allowed from the current stage.
    """
    if not allowed(state, type(event)):
        raise InvalidTransitionError(state.stage, type(event).__name__)
    return event.apply(state)
