"""Blob store providers: local filesystem and the backend's HTTP file endpoint."""

import asyncio
import logging
import re
import time
import uuid
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from src.core.config import get_settings
from src.core.exceptions import UploadError, UploadErrorKind
from src.core.utils import audio_extension
from src.services.storage.base import BaseBlobStore, ByteProgressCallback

logger = logging.getLogger(__name__)

_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]")


def safe_segment(value: str) -> str:
    """Make *value* usable as a single path component."""
    cleaned = _UNSAFE_SEGMENT.sub("_", value).strip(".")
    return cleaned or "_"


def _remove_partial(path: Path | None) -> None:
    """Delete a file left behind by an interrupted write."""
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove partial upload %s: %s", path, exc)


class LocalBlobStore(BaseBlobStore):
    """Writes recordings to ``<root>/<patient_id>/<timestamp>.<ext>``.

    A write that fails or is cancelled removes its partial file.

    Args:
        root: Directory holding all recordings (default from settings).
        public_url: URL prefix the files are served under. When empty the
            returned URL is a ``file://`` URI.
        chunk_size: Bytes written per step (progress granularity).
    """

    def __init__(
        self,
        root: str | Path | None = None,
        public_url: str | None = None,
        chunk_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self._root = Path(root or settings.recordings_dir)
        self._public_url = (
            public_url if public_url is not None else settings.storage_public_url
        ).rstrip("/")
        self._chunk_size = chunk_size or settings.upload_chunk_size

    @property
    def root(self) -> Path:
        return self._root

    async def upload(
        self,
        data: bytes,
        *,
        mime_type: str,
        patient_id: str,
        appointment_id: str | None = None,
        on_progress: ByteProgressCallback | None = None,
    ) -> str:
        directory = self._root / safe_segment(patient_id)
        ext = audio_extension(mime_type)
        total = len(data)
        path: Path | None = None
        try:
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
            path = await asyncio.to_thread(self._reserve, directory, ext)
            fh = await asyncio.to_thread(path.open, "wb")
            try:
                sent = 0
                for offset in range(0, total, self._chunk_size):
                    chunk = data[offset : offset + self._chunk_size]
                    await asyncio.to_thread(fh.write, chunk)
                    sent += len(chunk)
                    if on_progress is not None:
                        on_progress(sent, total)
            finally:
                await asyncio.to_thread(fh.close)
        except OSError as exc:
            _remove_partial(path)
            logger.error("Failed to store recording for patient %s: %s", patient_id, exc)
            raise UploadError(UploadErrorKind.network, f"Could not store audio: {exc}") from exc
        except (Exception, asyncio.CancelledError):
            _remove_partial(path)
            raise

        logger.info("Stored %d bytes at %s", total, path)
        return self.url_for(path)

    @staticmethod
    def _reserve(directory: Path, ext: str) -> Path:
        """Create an empty, uniquely named file (millisecond timestamp)."""
        path = directory / f"{int(time.time() * 1000)}.{ext}"
        try:
            path.touch(exist_ok=False)
        except FileExistsError:
            path = directory / f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"
            path.touch(exist_ok=False)
        return path

    def url_for(self, path: Path) -> str:
        if self._public_url:
            relative = path.relative_to(self._root)
            return f"{self._public_url}/{relative.as_posix()}"
        return path.resolve().as_uri()

    def path_for(self, patient_id: str, file_name: str) -> Path:
        """Resolve a stored file, refusing anything outside the store root.

        Raises:
            FileNotFoundError: If the file does not exist or escapes the root.
        """
        root = self._root.resolve()
        candidate = (root / patient_id / file_name).resolve()
        if not candidate.is_relative_to(root) or not candidate.is_file():
            raise FileNotFoundError(f"{patient_id}/{file_name}")
        return candidate

    def path_for_url(self, url: str) -> Path | None:
        """Map a URL produced by this store back to its file, else None."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            candidate = Path(unquote(parsed.path)).resolve()
            if candidate.is_relative_to(self._root.resolve()):
                return candidate
            return None
        if self._public_url and url.startswith(self._public_url + "/"):
            relative = unquote(url[len(self._public_url) + 1 :])
            patient_id, _, file_name = relative.partition("/")
            try:
                return self.path_for(patient_id, file_name)
            except FileNotFoundError:
                return None
        return None


class HTTPBlobStore(BaseBlobStore):
    """Streams recordings to ``PUT /api/v1/audio/files`` on the backend.

    Progress is reported per chunk handed to the transport.

    Args:
        base_url: Backend base URL (default from settings).
        timeout: Request timeout in seconds.
        chunk_size: Bytes per streamed chunk.
        client: Optional shared ``httpx.AsyncClient`` (not closed by the store).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        chunk_size: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._timeout = timeout or settings.api_timeout
        self._chunk_size = chunk_size or settings.upload_chunk_size
        self._client = client

    async def upload(
        self,
        data: bytes,
        *,
        mime_type: str,
        patient_id: str,
        appointment_id: str | None = None,
        on_progress: ByteProgressCallback | None = None,
    ) -> str:
        total = len(data)

        async def body():
            sent = 0
            for offset in range(0, total, self._chunk_size):
                chunk = data[offset : offset + self._chunk_size]
                yield chunk
                sent += len(chunk)
                if on_progress is not None:
                    on_progress(sent, total)

        params = {"patient_id": patient_id}
        if appointment_id:
            params["appointment_id"] = appointment_id
        headers = {"Content-Type": mime_type, "Content-Length": str(total)}

        try:
            if self._client is not None:
                response = await self._put(self._client, params, headers, body())
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._put(client, params, headers, body())
            response.raise_for_status()
            audio_url = response.json()["audio_url"]
        except httpx.HTTPStatusError as exc:
            raise _upload_error_from_response(exc.response) from exc
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.error("Audio upload failed: %s", exc)
            raise UploadError(UploadErrorKind.network, f"Audio upload failed: {exc}") from exc

        logger.info("Uploaded %d bytes -> %s", total, audio_url)
        return audio_url

    async def _put(self, client: httpx.AsyncClient, params, headers, content) -> httpx.Response:
        return await client.put(
            f"{self._base_url}/api/v1/audio/files",
            params=params,
            headers=headers,
            content=content,
        )


_STATUS_KINDS = {
    413: UploadErrorKind.oversize,
    415: UploadErrorKind.invalid_type,
    422: UploadErrorKind.empty,
}


def _upload_error_from_response(response: httpx.Response) -> UploadError:
    """Translate a backend rejection into the matching ``UploadError``."""
    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text
    kind = _STATUS_KINDS.get(response.status_code, UploadErrorKind.network)
    return UploadError(kind, f"Audio upload failed ({response.status_code}): {detail}")


def create_blob_store(provider: str | None = None, **kwargs) -> BaseBlobStore:
    """
    Factory function to create a blob store based on provider.

    Args:
        provider: "local" or "http" (default from settings).
        **kwargs: Provider-specific configuration

    Raises:
        ValueError: If provider is unknown
    """
    provider = provider or get_settings().storage_provider
    if provider == "local":
        return LocalBlobStore(**kwargs)
    elif provider == "http":
        return HTTPBlobStore(**kwargs)
    else:
        raise ValueError(f"Unknown storage provider: {provider}")
