"""
Pipeline module - the capture -> upload -> transcription -> review flow.

``build_pipeline`` wires the configured collaborators into an
``AudioReportPipeline``.
"""

import logging

from src.core.config import get_settings
from src.services.audio.capture import BaseMediaCapture, SoundDeviceCapture
from src.services.audio.recorder import Recorder
from src.services.backend import BaseBackend, create_backend
from src.services.storage.base import BaseBlobStore
from src.services.storage.blob_store import create_blob_store
from src.services.storage.uploader import UploadCoordinator
from src.services.templates import get_templates
from src.services.transcription.coordinator import TranscriptionCoordinator

from .orchestrator import AudioReportPipeline, StateCallback
from .registrar import SessionRegistrar
from .review import ReviewStage
from .state import PipelineState, RecoveryAction, Stage, advance

logger = logging.getLogger(__name__)

__all__ = [
    "AudioReportPipeline",
    "PipelineState",
    "RecoveryAction",
    "ReviewStage",
    "SessionRegistrar",
    "Stage",
    "advance",
    "build_pipeline",
]


async def build_pipeline(
    patient_id: str,
    appointment_id: str | None = None,
    *,
    capture: BaseMediaCapture | None = None,
    backend: BaseBackend | None = None,
    store: BaseBlobStore | None = None,
    language: str | None = None,
    default_template_id: str | None = None,
    notify: StateCallback | None = None,
) -> AudioReportPipeline:
    """Create a pipeline from settings, overriding any collaborator given.

    A backend created here is closed together with the pipeline.
    """
    settings = get_settings()
    owned_backend = None
    if backend is None:
        backend = owned_backend = create_backend(settings.backend_provider)
    store = store or create_blob_store(settings.storage_provider)

    try:
        templates = await backend.list_templates()
    except Exception:
        logger.warning("Could not load report templates; using configured defaults")
        templates = get_templates()

    return AudioReportPipeline(
        patient_id,
        appointment_id=appointment_id,
        recorder=Recorder(capture or SoundDeviceCapture()),
        uploader=UploadCoordinator(store),
        registrar=SessionRegistrar(backend),
        transcriber=TranscriptionCoordinator(backend),
        report_api=backend,
        templates=templates,
        default_template_id=default_template_id,
        language=language,
        notify=notify,
        backend=owned_backend,
    )
