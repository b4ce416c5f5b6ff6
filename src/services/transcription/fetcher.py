"""Loads stored audio by URL for the transcription service."""

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from src.core.config import get_settings
from src.core.exceptions import TranscriptionError
from src.core.utils import mime_type_for_file
from src.services.storage.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedAudio:
    data: bytes
    mime_type: str | None


class AudioFetcher:
    """Resolves an ``audio_url`` to bytes.

    URLs produced by the local store (``file://`` under the recordings
    directory, or the configured public prefix) are read from disk; any
    other http(s) URL is downloaded.

    Args:
        store: Local store whose files may be read directly.
        timeout: Download timeout in seconds.
        client: Optional ``httpx.AsyncClient`` (used in tests).
    """

    def __init__(
        self,
        store: LocalBlobStore | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store or LocalBlobStore()
        self._timeout = timeout or settings.api_timeout
        self._client = client

    async def fetch(self, audio_url: str) -> FetchedAudio:
        """Return the audio stored at *audio_url*.

        Raises:
            TranscriptionError: If the audio cannot be read.
        """
        path = self._store.path_for_url(audio_url)
        if path is not None:
            try:
                data = await asyncio.to_thread(path.read_bytes)
            except OSError as exc:
                raise TranscriptionError(detail=f"Stored audio is unreadable: {exc}") from exc
            return FetchedAudio(data=data, mime_type=mime_type_for_file(path.name))

        scheme = urlparse(audio_url).scheme
        if scheme not in ("http", "https"):
            raise TranscriptionError(detail=f"Unsupported audio URL: {audio_url}")

        try:
            if self._client is not None:
                response = await self._client.get(audio_url)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(audio_url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to download %s: %s", audio_url, exc)
            raise TranscriptionError(detail=f"Could not download audio: {exc}") from exc

        content_type = response.headers.get("content-type")
        mime_type = content_type.split(";", 1)[0].strip() if content_type else None
        return FetchedAudio(data=response.content, mime_type=mime_type)
