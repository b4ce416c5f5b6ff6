"""Upload coordinator: validates a finalized recording and stores it durably."""

import logging
from collections.abc import Callable

from src.core.config import get_settings
from src.core.exceptions import UploadError, UploadErrorKind
from src.core.models import Recording
from src.core.utils import format_file_size, is_audio_mime_type
from src.services.storage.base import BaseBlobStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class UploadCoordinator:
    """Validates and transfers a Recording, reporting progress as 0-100.

    Validation runs before the store is touched, so rejected payloads
    never cause a network call. There is no automatic retry: callers
    re-submit the same Recording.

    Args:
        store: Destination blob store.
        max_bytes: Size limit (default from settings, 100 MB).
        on_progress: Optional callback receiving each new percentage.
    """

    def __init__(
        self,
        store: BaseBlobStore,
        max_bytes: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._store = store
        self._max_bytes = max_bytes or get_settings().max_upload_bytes
        self._on_progress = on_progress
        self._call_progress: ProgressCallback | None = None
        self._progress = 0

    @property
    def progress(self) -> int:
        """Percentage of the current (or last) transfer, 0-100."""
        return self._progress

    def validate(self, recording: Recording) -> None:
        """Raise ``UploadError`` if the recording cannot be uploaded."""
        if recording.size == 0:
            raise UploadError(UploadErrorKind.empty, "The recording is empty")
        if recording.size > self._max_bytes:
            raise UploadError(
                UploadErrorKind.oversize,
                f"The recording is {format_file_size(recording.size)}; "
                f"the limit is {format_file_size(self._max_bytes)}",
            )
        if not is_audio_mime_type(recording.mime_type):
            raise UploadError(
                UploadErrorKind.invalid_type,
                f"Unsupported file type: {recording.mime_type or 'unknown'}",
            )

    async def upload(
        self,
        recording: Recording,
        patient_id: str,
        appointment_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Validate and store *recording*; return the durable audio URL.

        Args:
            on_progress: Extra observer for this transfer only.

        Raises:
            UploadError: ``empty``/``oversize``/``invalid_type`` before any
                transfer, or ``network`` if the transfer fails.
        """
        self.validate(recording)
        self._call_progress = on_progress
        self._progress = 0
        self._emit(0)

        def on_bytes(sent: int, total: int) -> None:
            if total:
                self._advance(sent * 100 // total)

        try:
            audio_url = await self._store.upload(
                recording.data,
                mime_type=recording.mime_type,
                patient_id=patient_id,
                appointment_id=appointment_id,
                on_progress=on_bytes,
            )
        except UploadError:
            raise
        except Exception as exc:
            logger.exception("Unexpected storage failure")
            raise UploadError(UploadErrorKind.network, f"Audio upload failed: {exc}") from exc

        self._advance(100)
        logger.info("Upload complete for patient %s: %s", patient_id, audio_url)
        return audio_url

    def _advance(self, percent: int) -> None:
        percent = min(max(percent, 0), 100)
        if percent <= self._progress:
            return
        self._progress = percent
        self._emit(percent)

    def _emit(self, percent: int) -> None:
        for observer in (self._on_progress, self._call_progress):
            if observer is None:
                continue
            try:
                observer(percent)
            except Exception:
                logger.warning("Upload progress observer failed", exc_info=True)
