"""
Async HTTP client for the ClinicScribe backend API.

Wraps ``httpx.AsyncClient``; transport and status failures are first
categorized as ``APIError`` and then translated into the domain error of
the calling stage.
"""

import logging

import httpx

from src.core.config import get_settings
from src.core.exceptions import (
    SaveError,
    SessionCreateError,
    TranscriptionError,
    TranscriptionErrorKind,
    TranscriptionPendingError,
)
from src.core.models import (
    AudioSession,
    AudioSessionCreate,
    Report,
    ReportCreate,
    ReportTemplate,
    TranscriptionOutcome,
    TranscriptionRequest,
)
from src.services.backend.base import BaseBackend

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Categorized API failure.

    Categories: "connection", "timeout", "http", "network".
    """

    def __init__(
        self,
        message: str,
        category: str = "unknown",
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.category = category
        self.status_code = status_code
        super().__init__(message)


class BackendClient(BaseBackend):
    """Thin async wrapper around httpx for calling the FastAPI backend.

    Args:
        base_url: Backend base URL (default from settings).
        timeout: Timeout for every call except transcription.
        client: Optional preconfigured ``httpx.AsyncClient`` (e.g. with an
            ``ASGITransport`` in tests). Closed by ``aclose()`` only when
            the client created it.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout or settings.api_timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with categorized error handling.

        Raises:
            APIError: On connection, timeout, HTTP status, or network errors.
        """
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.ConnectError:
            raise APIError(
                "Backend server is not running. "
                "Start it with: `uvicorn src.api.app:app --port 8000`",
                category="connection",
            ) from None
        except httpx.TimeoutException:
            raise APIError(
                "Request timed out. The server may be overloaded.",
                category="timeout",
            ) from None
        except httpx.HTTPStatusError as exc:
            try:
                detail = exc.response.json().get("detail", exc.response.text)
            except Exception:
                detail = exc.response.text or str(exc)
            raise APIError(
                str(detail), category="http", status_code=exc.response.status_code
            ) from None
        except httpx.HTTPError as exc:
            raise APIError(f"Network error: {exc}", category="network") from None

    # -- health --

    async def health_check(self) -> dict:
        return (await self._request("GET", "/health")).json()

    # -- audio sessions --

    async def create_session(self, data: AudioSessionCreate) -> AudioSession:
        try:
            resp = await self._request(
                "POST", "/api/v1/audio/sessions", json=data.model_dump(mode="json")
            )
        except APIError as exc:
            logger.warning("Session creation failed (%s): %s", exc.category, exc.message)
            raise SessionCreateError(data.audio_url, exc.message) from exc
        return AudioSession.model_validate(resp.json())

    async def get_session(self, session_id: str) -> AudioSession:
        resp = await self._request("GET", f"/api/v1/audio/sessions/{session_id}")
        return AudioSession.model_validate(resp.json())

    # -- transcription --

    async def transcribe(
        self,
        audio_url: str,
        session_id: str,
        language: str | None = None,
    ) -> TranscriptionOutcome:
        body = TranscriptionRequest(
            audio_url=audio_url,
            audio_session_id=session_id,
            language=language or get_settings().default_language,
        )
        try:
            # Bounded by the transcription coordinator, not the client timeout
            resp = await self._request(
                "POST",
                "/api/v1/audio/transcribe",
                json=body.model_dump(mode="json"),
                timeout=None,
            )
        except APIError as exc:
            if exc.status_code == 409:
                raise TranscriptionPendingError(session_id) from exc
            kind = (
                TranscriptionErrorKind.timeout
                if exc.status_code == 504 or exc.category == "timeout"
                else TranscriptionErrorKind.backend
            )
            raise TranscriptionError(exc.message, kind=kind, session_id=session_id) from exc
        return TranscriptionOutcome.model_validate(resp.json())

    async def get_transcription(self, session_id: str) -> TranscriptionOutcome:
        resp = await self._request("GET", f"/api/v1/audio/sessions/{session_id}/transcription")
        return TranscriptionOutcome.model_validate(resp.json())

    # -- reports --

    async def create_report(self, data: ReportCreate) -> Report:
        try:
            resp = await self._request(
                "POST", "/api/v1/reports", json=data.model_dump(mode="json")
            )
        except APIError as exc:
            logger.warning("Report save failed (%s): %s", exc.category, exc.message)
            raise SaveError(f"Report could not be saved: {exc.message}") from exc
        return Report.model_validate(resp.json())

    async def get_report(self, report_id: str) -> Report:
        resp = await self._request("GET", f"/api/v1/reports/{report_id}")
        return Report.model_validate(resp.json())

    async def list_templates(self) -> list[ReportTemplate]:
        resp = await self._request("GET", "/api/v1/reports/templates")
        return [ReportTemplate.model_validate(item) for item in resp.json()]
