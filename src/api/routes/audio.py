"""
Audio REST endpoints.

File storage, audio-session records, and transcription. Engines and
stores are provided through dependencies so tests can override them.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse

from src.core.config import get_settings
from src.core.exceptions import AudioFileNotFoundError, UploadError, UploadErrorKind
from src.core.models import (
    AudioSession,
    AudioSessionCreate,
    TranscriptionOutcome,
    TranscriptionRequest,
    UploadResponse,
)
from src.core.utils import base_mime_type, format_file_size, is_audio_mime_type
from src.services.storage.blob_store import LocalBlobStore
from src.services.storage.database import get_session
from src.services.storage.repository import ClinicRepository, to_audio_session
from src.services.transcription import BaseSTT, create_stt
from src.services.transcription.fetcher import AudioFetcher
from src.services.transcription.service import TranscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audio", tags=["audio"])


def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore()


def get_stt() -> BaseSTT:
    return create_stt(get_settings().whisper_provider)


def get_transcription_service(
    stt: BaseSTT = Depends(get_stt),
    store: LocalBlobStore = Depends(get_blob_store),
) -> TranscriptionService:
    return TranscriptionService(stt, fetcher=AudioFetcher(store))


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@router.put("/files", response_model=UploadResponse)
async def upload_audio_file(
    request: Request,
    patient_id: str = Query(..., min_length=1),
    appointment_id: str | None = Query(None),
    store: LocalBlobStore = Depends(get_blob_store),
):
    """Store a raw audio body under the patient's prefix."""
    max_bytes = get_settings().max_upload_bytes
    content_type = request.headers.get("content-type", "")
    if not is_audio_mime_type(content_type):
        raise UploadError(
            UploadErrorKind.invalid_type,
            f"Unsupported file type: {content_type or 'unknown'}",
        )

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise UploadError(
            UploadErrorKind.oversize,
            f"File too large; the limit is {format_file_size(max_bytes)}",
        )

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise UploadError(
                UploadErrorKind.oversize,
                f"File too large; the limit is {format_file_size(max_bytes)}",
            )
    if not body:
        raise UploadError(UploadErrorKind.empty, "The uploaded file is empty")

    mime_type = base_mime_type(content_type)
    audio_url = await store.upload(
        bytes(body),
        mime_type=mime_type,
        patient_id=patient_id,
        appointment_id=appointment_id,
    )
    return UploadResponse(audio_url=audio_url, file_size_bytes=len(body), mime_type=mime_type)


@router.get("/files/{patient_id}/{file_name}")
async def download_audio_file(
    patient_id: str,
    file_name: str,
    store: LocalBlobStore = Depends(get_blob_store),
):
    """Serve a stored audio file."""
    try:
        path = store.path_for(patient_id, file_name)
    except FileNotFoundError:
        raise AudioFileNotFoundError(f"{patient_id}/{file_name}") from None
    return FileResponse(path)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/sessions", response_model=AudioSession)
async def create_audio_session(body: AudioSessionCreate):
    """Register an uploaded recording (status ``uploaded``)."""
    async with get_session() as session:
        repo = ClinicRepository(session)
        row = await repo.create_session(body)
        return to_audio_session(row)


@router.get("/sessions", response_model=list[AudioSession])
async def list_audio_sessions(
    patient_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    async with get_session() as session:
        repo = ClinicRepository(session)
        rows = await repo.list_sessions(patient_id=patient_id, limit=limit, offset=offset)
        return [to_audio_session(r) for r in rows]


@router.get("/sessions/{session_id}", response_model=AudioSession)
async def get_audio_session(session_id: str):
    async with get_session() as session:
        repo = ClinicRepository(session)
        return to_audio_session(await repo.get_session(session_id))


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------


@router.post("/transcribe", response_model=TranscriptionOutcome)
async def transcribe_audio(
    body: TranscriptionRequest,
    service: TranscriptionService = Depends(get_transcription_service),
):
    """Transcribe a session's audio (409 while an attempt is already running)."""
    return await service.transcribe_session(
        body.audio_session_id,
        audio_url=body.audio_url,
        language=body.language,
    )


@router.get("/sessions/{session_id}/transcription", response_model=TranscriptionOutcome)
async def get_session_transcription(
    session_id: str,
    service: TranscriptionService = Depends(get_transcription_service),
):
    return await service.get_transcription(session_id)
