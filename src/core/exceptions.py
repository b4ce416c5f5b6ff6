"""
ClinicScribe exception hierarchy.

All application-specific exceptions inherit from ClinicScribeError,
enabling centralized error handling in the API middleware layer and
inline, per-stage error reporting in the capture pipeline.
"""

from datetime import UTC, datetime
from enum import StrEnum


class ClinicScribeError(Exception):
    """Base exception for all ClinicScribe errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "CLINICSCRIBE_ERROR",
        status_code: int = 500,
    ) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Stage 1: microphone / recorder
# ---------------------------------------------------------------------------


class DeviceErrorKind(StrEnum):
    """Why the microphone could not be acquired."""

    permission_denied = "permission_denied"
    not_found = "not_found"
    busy = "busy"
    unsupported = "unsupported"


_DEVICE_MESSAGES = {
    DeviceErrorKind.permission_denied: (
        "Microphone permission denied. Allow microphone access and try again."
    ),
    DeviceErrorKind.not_found: "No microphone was found. Connect one and try again.",
    DeviceErrorKind.busy: (
        "The microphone is being used by another application. Close it and try again."
    ),
    DeviceErrorKind.unsupported: "Audio capture is not supported on this system.",
}


class DeviceError(ClinicScribeError):
    """Raised when the microphone cannot be acquired. Retrying start() is allowed."""

    def __init__(self, kind: DeviceErrorKind, detail: str | None = None) -> None:
        self.kind = DeviceErrorKind(kind)
        super().__init__(
            detail=detail or _DEVICE_MESSAGES[self.kind],
            code=f"DEVICE_{self.kind.upper()}",
            status_code=503,
        )


class RecorderStateError(ClinicScribeError):
    """Raised when a recorder operation is not valid in the current state."""

    def __init__(self, action: str, state: str) -> None:
        self.action = action
        self.state = state
        super().__init__(
            detail=f"Cannot {action} while the recorder is {state}",
            code="RECORDER_INVALID_STATE",
            status_code=409,
        )


# ---------------------------------------------------------------------------
# Stage 2: upload
# ---------------------------------------------------------------------------


class UploadErrorKind(StrEnum):
    """Upload failure categories. Only ``network`` involves a network attempt."""

    oversize = "oversize"
    invalid_type = "invalid_type"
    empty = "empty"
    network = "network"


_UPLOAD_STATUS = {
    UploadErrorKind.oversize: 413,
    UploadErrorKind.invalid_type: 415,
    UploadErrorKind.empty: 422,
    UploadErrorKind.network: 502,
}


class UploadError(ClinicScribeError):
    """Raised when a recording cannot be stored."""

    def __init__(self, kind: UploadErrorKind, detail: str = "Audio upload failed") -> None:
        self.kind = UploadErrorKind(kind)
        super().__init__(
            detail=detail,
            code=f"UPLOAD_{self.kind.upper()}",
            status_code=_UPLOAD_STATUS[self.kind],
        )


class AudioFileNotFoundError(ClinicScribeError):
    """Raised when a stored audio file does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(
            detail=f"Audio file not found: {path}",
            code="AUDIO_FILE_NOT_FOUND",
            status_code=404,
        )


# ---------------------------------------------------------------------------
# Stage 3: session registration
# ---------------------------------------------------------------------------


class SessionCreateError(ClinicScribeError):
    """Raised when the audio is stored but no session record could be created.

    Carries the already-durable ``audio_url`` so the caller can retry
    registration without uploading again.
    """

    def __init__(self, audio_url: str, detail: str | None = None) -> None:
        self.audio_url = audio_url
        message = (
            "The audio was uploaded and is stored safely, but the session record "
            "could not be created. Retry creating the session; no need to upload again."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(detail=message, code="SESSION_CREATE_FAILED", status_code=502)


class SessionNotFoundError(ClinicScribeError):
    """Raised when an audio session ID does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            detail=f"Audio session not found: {session_id}",
            code="SESSION_NOT_FOUND",
            status_code=404,
        )


# ---------------------------------------------------------------------------
# Stage 4: transcription
# ---------------------------------------------------------------------------


class TranscriptionErrorKind(StrEnum):
    """Transcription failure categories."""

    backend = "backend"
    timeout = "timeout"
    pending = "pending"


class TranscriptionError(ClinicScribeError):
    """Raised when STT processing fails. Session and audio stay valid."""

    def __init__(
        self,
        detail: str = "Transcription failed",
        kind: TranscriptionErrorKind = TranscriptionErrorKind.backend,
        session_id: str | None = None,
    ) -> None:
        self.kind = TranscriptionErrorKind(kind)
        self.session_id = session_id
        status_code = 504 if self.kind == TranscriptionErrorKind.timeout else 502
        super().__init__(
            detail=detail,
            code="TRANSCRIPTION_TIMEOUT"
            if self.kind == TranscriptionErrorKind.timeout
            else "TRANSCRIPTION_ERROR",
            status_code=status_code,
        )


class TranscriptionPendingError(TranscriptionError):
    """Raised when a transcription for the session is already running."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            detail=(
                f"Transcription for session {session_id} is already in progress. "
                "Try again in a few seconds."
            ),
            kind=TranscriptionErrorKind.pending,
            session_id=session_id,
        )
        self.code = "TRANSCRIPTION_IN_PROGRESS"
        self.status_code = 409


# ---------------------------------------------------------------------------
# Stage 5: review / report
# ---------------------------------------------------------------------------


class SaveError(ClinicScribeError):
    """Raised when the report cannot be persisted. The edited text is kept."""

    def __init__(self, detail: str = "Report could not be saved") -> None:
        super().__init__(detail=detail, code="REPORT_SAVE_FAILED", status_code=502)


class ReportNotFoundError(ClinicScribeError):
    """Raised when a report ID does not exist."""

    def __init__(self, report_id: str) -> None:
        super().__init__(
            detail=f"Report not found: {report_id}",
            code="REPORT_NOT_FOUND",
            status_code=404,
        )


class ReportTemplateNotFoundError(ClinicScribeError):
    """Raised when a report template does not exist in the catalog."""

    def __init__(self, template_id: str) -> None:
        super().__init__(
            detail=f"Report template not found: {template_id}",
            code="TEMPLATE_NOT_FOUND",
            status_code=404,
        )


class ReportContentEmptyError(ClinicScribeError):
    """Raised when saving a report whose text is empty."""

    def __init__(self) -> None:
        super().__init__(
            detail="Report content is empty",
            code="REPORT_CONTENT_EMPTY",
            status_code=422,
        )


class ReviewClosedError(ClinicScribeError):
    """Raised when a review is saving, already saved, or cancelled."""

    def __init__(self, state: str) -> None:
        super().__init__(
            detail=f"Review is {state}; no further changes can be saved",
            code="REVIEW_CLOSED",
            status_code=409,
        )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class InvalidTransitionError(ClinicScribeError):
    """Raised when a pipeline event is not allowed in the current stage."""

    def __init__(self, stage: str, event: str) -> None:
        self.stage = stage
        self.event = event
        super().__init__(
            detail=f"{event} is not allowed while the pipeline is {stage}",
            code="PIPELINE_INVALID_TRANSITION",
            status_code=409,
        )
