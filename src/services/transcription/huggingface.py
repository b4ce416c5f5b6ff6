"""
Hugging Face Inference API STT provider.

Posts the recorded container to a hosted Whisper model. The API answers
503 while the model is loading; those responses are retried with
exponential backoff before surfacing a ``TranscriptionError``.
"""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import get_settings
from src.core.exceptions import TranscriptionError
from src.core.models import TranscriptionResult, TranscriptionSegment
from src.services.transcription.base import BaseSTT

logger = logging.getLogger(__name__)


class ModelLoadingError(Exception):
    """The hosted model is still loading (HTTP 503)."""


class HuggingFaceSTT(BaseSTT):
    """Speech-to-text via the Hugging Face inference API.

    Args:
        api_key: Hugging Face token (falls back to settings).
        model: Model id, e.g. "openai/whisper-large-v3".
        base_url: Inference API base URL.
        timeout: Request timeout in seconds.
        client: Optional ``httpx.AsyncClient`` (used in tests).
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key or settings.huggingface_api_key
        self._model = model or settings.huggingface_model
        self._base_url = (base_url or settings.huggingface_base_url).rstrip("/")
        self._timeout = timeout or settings.stt_timeout_seconds or 280.0
        self._client = client

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/{self._model}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=16),
        retry=retry_if_exception_type(ModelLoadingError),
        reraise=True,
    )
    async def _call_api(self, audio: bytes, mime_type: str, language: str | None) -> dict:
        """POST the audio and return the decoded JSON body.

        Raises ``ModelLoadingError`` on 503 so the decorator can retry.
        """
        headers = {"Content-Type": mime_type, "Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        params = {"language": language} if language else None

        if self._client is not None:
            response = await self._client.post(
                self.endpoint, content=audio, headers=headers, params=params
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self.endpoint, content=audio, headers=headers, params=params
                )

        if response.status_code == 503:
            logger.warning("Hugging Face model %s is loading; retrying", self._model)
            raise ModelLoadingError(response.text)
        response.raise_for_status()
        return response.json()

    async def transcribe(
        self,
        audio: bytes,
        language: str | None = None,
        mime_type: str | None = None,
    ) -> TranscriptionResult:
        try:
            payload = await self._call_api(audio, mime_type or "audio/wav", language)
        except ModelLoadingError as exc:
            raise TranscriptionError(
                detail="The speech model is still loading. Try again in a few seconds."
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise TranscriptionError(
                detail=f"Hugging Face API error {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise TranscriptionError(detail=f"Hugging Face request failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise TranscriptionError(detail="Unexpected response from Hugging Face API")
        if payload.get("error"):
            raise TranscriptionError(detail=f"Hugging Face API error: {payload['error']}")

        text = str(payload.get("text", "")).strip()
        segments = []
        for chunk in payload.get("chunks") or []:
            chunk_text = str(chunk.get("text", "")).strip()
            if not chunk_text:
                continue
            start, end = chunk.get("timestamp") or (0.0, 0.0)
            segments.append(
                TranscriptionSegment(text=chunk_text, start=start or 0.0, end=end or 0.0)
            )
        return TranscriptionResult(
            text=text,
            language=language or "unknown",
            duration=segments[-1].end if segments else 0.0,
            segments=segments,
        )
