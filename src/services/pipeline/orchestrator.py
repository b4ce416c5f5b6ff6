"""Audio report pipeline: record -> upload -> register -> transcribe -> review -> save.

One ``AudioReportPipeline`` serves one patient/appointment context. All
stage changes go through the reducer in ``state.py``; stage failures are
recorded in ``state.error`` with a ``recovery_action`` instead of being
raised, and ``retry()`` resumes from the failed stage with the durable
inputs it already has.

Usage::

    async with await build_pipeline("patient-1") as pipeline:
        await pipeline.start_recording()
        ...
        state = await pipeline.finish()
        if state.stage is Stage.reviewing:
            pipeline.edit(state.transcript.text + " (revisado)")
            await pipeline.save(template_id="resumo")
"""

import logging
from collections.abc import Callable
from pathlib import Path

from src.core.config import get_settings
from src.core.exceptions import (
    DeviceError,
    InvalidTransitionError,
    RecorderStateError,
    ReportContentEmptyError,
    SaveError,
    SessionCreateError,
    TranscriptionError,
    UploadError,
)
from src.core.models import RecorderState, ReportTemplate
from src.services.audio.file_source import load_audio_file
from src.services.audio.recorder import Recorder
from src.services.backend.base import BaseBackend, BaseReportAPI
from src.services.pipeline.registrar import SessionRegistrar
from src.services.pipeline.review import ReviewStage
from src.services.pipeline.state import (
    Cancelled,
    DeviceFailed,
    Event,
    PipelineState,
    RecordingDiscarded,
    RecordingLoaded,
    RecordingRestarted,
    RecordingStarted,
    RecordingStopped,
    RegistrationFailed,
    RegistrationStarted,
    RegistrationSucceeded,
    SaveFailed,
    SaveStarted,
    SaveSucceeded,
    Stage,
    TranscriptionFailed,
    TranscriptionStarted,
    TranscriptionSucceeded,
    UploadFailed,
    UploadProgressed,
    UploadStarted,
    UploadSucceeded,
    advance,
    allowed,
)
from src.services.storage.uploader import UploadCoordinator
from src.services.templates import get_templates
from src.services.transcription.coordinator import TranscriptionCoordinator

logger = logging.getLogger(__name__)

StateCallback = Callable[[PipelineState], None]


class AudioReportPipeline:
    """Owns the recorder, the stage coordinators and the review for one context.

    Args:
        patient_id: Patient the recording and report belong to.
        recorder: Microphone recorder.
        uploader: Upload coordinator.
        registrar: Session registrar.
        transcriber: Transcription coordinator.
        report_api: Report API used by the review stage.
        appointment_id: Optional appointment context.
        templates: Report template catalog (default from settings).
        default_template_id: Initial template selection.
        language: Transcription language hint.
        clipboard: Copy function handed to the review stage.
        notify: Observer called with every new state.
        backend: Backend closed by ``close()`` (when the pipeline owns it).
    """

    def __init__(
        self,
        patient_id: str,
        *,
        recorder: Recorder,
        uploader: UploadCoordinator,
        registrar: SessionRegistrar,
        transcriber: TranscriptionCoordinator,
        report_api: BaseReportAPI,
        appointment_id: str | None = None,
        templates: list[ReportTemplate] | None = None,
        default_template_id: str | None = None,
        language: str | None = None,
        clipboard: Callable[[str], None] | None = None,
        notify: StateCallback | None = None,
        backend: BaseBackend | None = None,
    ) -> None:
        settings = get_settings()
        self.patient_id = patient_id
        self.appointment_id = appointment_id
        self._recorder = recorder
        self._uploader = uploader
        self._registrar = registrar
        self._transcriber = transcriber
        self._report_api = report_api
        self._templates = templates if templates is not None else get_templates()
        self._default_template_id = default_template_id or settings.default_template_id
        self._language = language or settings.default_language
        self._clipboard = clipboard
        self._notify = notify
        self._backend = backend
        self._state = PipelineState()
        self._review: ReviewStage | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def recorder(self) -> Recorder:
        return self._recorder

    @property
    def review(self) -> ReviewStage | None:
        return self._review

    @property
    def transcription_pending(self) -> bool:
        session = self._state.session
        return session is not None and self._transcriber.is_pending(session.id)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def start_recording(self) -> PipelineState:
        """Acquire the microphone and start a take.

        Raises:
            DeviceError: The microphone is unavailable; also kept in ``state.error``.
        """
        self._require(RecordingStarted, "start_recording")
        before = self._state
        try:
            await self._recorder.start()
        except DeviceError as exc:
            logger.warning("Microphone unavailable: %s", exc.detail)
            if self._state is before:
                self._dispatch(DeviceFailed(exc))
            raise
        if self._state is not before or self._recorder.state is not RecorderState.recording:
            logger.info("Recording start abandoned at %s", self._state.stage)
            return self._state
        return self._dispatch(RecordingStarted())

    def pause(self) -> None:
        if self._state.stage is Stage.recording:
            self._recorder.pause()

    def resume(self) -> None:
        if self._state.stage is Stage.recording:
            self._recorder.resume()

    async def restart_recording(self) -> PipelineState:
        """Drop the current take and start a new one."""
        self._require(RecordingRestarted, "restart_recording")
        before = self._state
        try:
            await self._recorder.restart()
        except DeviceError as exc:
            if self._state is before:
                self._dispatch(RecordingDiscarded())
                self._dispatch(DeviceFailed(exc))
            raise
        if self._state is not before or self._recorder.state is not RecorderState.recording:
            logger.info("Recording restart abandoned at %s", self._state.stage)
            return self._state
        return self._dispatch(RecordingRestarted())

    def discard_recording(self) -> PipelineState:
        self._require(RecordingDiscarded, "discard_recording")
        self._recorder.discard()
        return self._dispatch(RecordingDiscarded())

    async def load_file(self, path: str | Path) -> PipelineState:
        """Use an existing audio file as the take; ``finish()`` then uploads it.

        The file goes through the same upload validation as a recording.

        Raises:
            AudioFileNotFoundError: *path* does not exist.
        """
        self._require(RecordingLoaded, "load_file")
        recording = await load_audio_file(path)
        return self._dispatch(RecordingLoaded(recording))

    # ------------------------------------------------------------------
    # Upload -> register -> transcribe
    # ------------------------------------------------------------------

    async def finish(self) -> PipelineState:
        """Finalize the take, then run upload, registration and transcription.

        Stops at the first failing stage; the failure is in ``state.error``.
        """
        if self._state.stage is Stage.recording:
            try:
                await self._recorder.finish()
            except RecorderStateError:
                if self._state.stage is Stage.recording:
                    raise
                return self._state
            self._dispatch(RecordingStopped(self._recorder.take_recording()))
        elif self._state.stage is not Stage.recorded:
            raise InvalidTransitionError(self._state.stage, "finish")
        return await self._run_stages()

    async def retry(self) -> PipelineState:
        """Re-run the failed stage with its durable inputs, then continue."""
        stage = self._state.stage
        if stage is Stage.save_failed:
            return await self.save()
        if stage not in (
            Stage.upload_failed,
            Stage.registration_failed,
            Stage.transcription_failed,
        ):
            raise InvalidTransitionError(stage, "retry")
        logger.info("Retrying pipeline from %s", stage)
        return await self._run_stages()

    async def _run_stages(self) -> PipelineState:
        if self._state.stage in (Stage.recorded, Stage.upload_failed):
            if not await self._upload():
                return self._state
        if self._state.stage in (Stage.uploaded, Stage.registration_failed):
            if not await self._register():
                return self._state
        if self._state.stage in (Stage.registered, Stage.transcription_failed):
            await self._transcribe()
        return self._state

    async def _upload(self) -> bool:
        recording = self._state.recording
        self._dispatch(UploadStarted())
        try:
            audio_url = await self._uploader.upload(
                recording,
                self.patient_id,
                self.appointment_id,
                on_progress=self._on_upload_progress,
            )
        except UploadError as exc:
            if not self._still(Stage.uploading):
                return False
            logger.warning("Upload failed (%s): %s", exc.kind, exc.detail)
            self._dispatch(UploadFailed(exc))
            return False
        if not self._still(Stage.uploading):
            return False
        self._dispatch(UploadSucceeded(audio_url))
        return True

    def _on_upload_progress(self, percent: int) -> None:
        if self._state.stage is Stage.uploading and percent > self._state.upload_progress:
            self._dispatch(UploadProgressed(percent))

    async def _register(self) -> bool:
        self._dispatch(RegistrationStarted())
        try:
            session = await self._registrar.register(
                audio_url=self._state.audio_url,
                patient_id=self.patient_id,
                appointment_id=self.appointment_id,
                file_size_bytes=self._state.file_size_bytes,
                duration_seconds=self._state.duration_seconds,
            )
        except SessionCreateError as exc:
            if not self._still(Stage.registering):
                return False
            logger.warning("Session registration failed: %s", exc.detail)
            self._dispatch(RegistrationFailed(exc))
            return False
        if not self._still(Stage.registering):
            return False
        self._dispatch(RegistrationSucceeded(session))
        return True

    async def _transcribe(self) -> bool:
        session = self._state.session
        self._dispatch(TranscriptionStarted())
        try:
            transcript = await self._transcriber.transcribe(
                session.id, self._state.audio_url, self._language
            )
        except TranscriptionError as exc:
            if not self._still(Stage.transcribing):
                return False
            logger.warning("Transcription failed (%s): %s", exc.kind, exc.detail)
            self._dispatch(TranscriptionFailed(exc))
            return False
        if not self._still(Stage.transcribing):
            return False
        self._review = ReviewStage(
            self._report_api,
            transcript,
            self._templates,
            patient_id=self.patient_id,
            session_id=session.id,
            default_template_id=self._default_template_id,
            clipboard=self._clipboard,
        )
        self._dispatch(TranscriptionSucceeded(transcript))
        return True

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def select_template(self, template_id: str) -> ReportTemplate:
        return self._require_review().select_template(template_id)

    def edit(self, text: str) -> None:
        self._require_review().edit(text)

    def copy_to_clipboard(self) -> str:
        return self._require_review().copy_to_clipboard()

    async def save(
        self,
        template_id: str | None = None,
        edited_text: str | None = None,
    ) -> PipelineState:
        """Create the report from the reviewed draft.

        Raises:
            ReportContentEmptyError: Blank text; nothing is sent.
            ReportTemplateNotFoundError: Unknown *template_id*.
        """
        review = self._require_review()
        self._require(SaveStarted, "save")
        if template_id is not None:
            review.select_template(template_id)
        if edited_text is not None:
            review.edit(edited_text)
        if not review.can_save:
            raise ReportContentEmptyError()

        self._dispatch(SaveStarted())
        try:
            report = await review.save()
        except SaveError as exc:
            logger.warning("Report save failed: %s", exc.detail)
            return self._dispatch(SaveFailed(exc))
        return self._dispatch(SaveSucceeded(report))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def cancel(self) -> PipelineState:
        """Abandon the flow. Uploaded audio and created sessions are kept.

        A stage still awaited by ``finish()`` or ``retry()`` is left to
        complete; its result is dropped and that call returns the cancelled
        state.
        """
        self._require(Cancelled, "cancel")
        self._recorder.discard()
        if self._review is not None:
            self._review.cancel()
        return self._dispatch(Cancelled())

    async def close(self) -> None:
        """Release the microphone and stop background work."""
        await self._recorder.close()
        await self._transcriber.close()
        if self._backend is not None:
            await self._backend.aclose()

    async def __aenter__(self) -> "AudioReportPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, event_type: type[Event], action: str) -> None:
        if not allowed(self._state, event_type):
            raise InvalidTransitionError(self._state.stage, action)

    def _still(self, stage: Stage) -> bool:
        """False once cancel() has moved the pipeline off *stage* mid-call."""
        if self._state.stage is stage:
            return True
        logger.info("Dropping %s result; pipeline is now %s", stage, self._state.stage)
        return False

    def _require_review(self) -> ReviewStage:
        if self._review is None or self._state.stage not in (
            Stage.reviewing,
            Stage.save_failed,
        ):
            raise InvalidTransitionError(self._state.stage, "review")
        return self._review

    def _dispatch(self, event: Event) -> PipelineState:
        previous = self._state.stage
        self._state = advance(self._state, event)
        if self._state.stage is not previous:
            logger.info("Pipeline %s -> %s", previous, self._state.stage)
        if self._notify is not None:
            try:
                self._notify(self._state)
            except Exception:
                logger.warning("Pipeline observer failed", exc_info=True)
        return self._state
