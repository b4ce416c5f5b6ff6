"""Session registrar: records an uploaded recording as an audio session."""

import logging

from src.core.exceptions import SessionCreateError
from src.core.models import AudioSession, AudioSessionCreate
from src.services.backend.base import BaseSessionAPI

logger = logging.getLogger(__name__)


class SessionRegistrar:
    """Creates exactly one AudioSession per call.

    Only ever called after a successful upload. On failure the audio is
    already durable, so recovery is calling ``register()`` again with the
    same ``audio_url``; nothing is re-uploaded.
    """

    def __init__(self, api: BaseSessionAPI) -> None:
        self._api = api

    async def register(
        self,
        audio_url: str,
        patient_id: str,
        appointment_id: str | None = None,
        file_size_bytes: int = 0,
        duration_seconds: int = 0,
    ) -> AudioSession:
        """Create the session record for *audio_url*.

        Raises:
            SessionCreateError: Carrying *audio_url*.
        """
        data = AudioSessionCreate(
            patient_id=patient_id,
            audio_url=audio_url,
            appointment_id=appointment_id,
            file_size_bytes=file_size_bytes,
            duration_seconds=duration_seconds,
        )
        try:
            session = await self._api.create_session(data)
        except SessionCreateError:
            raise
        except Exception as exc:
            logger.exception("Session creation failed for %s", audio_url)
            raise SessionCreateError(audio_url, str(exc)) from exc

        logger.info("Registered session %s for %s", session.id, audio_url)
        return session
