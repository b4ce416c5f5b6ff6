"""Unit tests for SessionRegistrar."""

import pytest

from src.core.exceptions import SessionCreateError
from src.services.pipeline.registrar import SessionRegistrar


class TestRegister:
    async def test_creates_one_session(self, backend):
        registrar = SessionRegistrar(backend)

        session = await registrar.register(
            "https://store/abc", "P1", "A1", file_size_bytes=1234, duration_seconds=5
        )

        assert session.id == "S1"
        assert session.audio_url == "https://store/abc"
        assert len(backend.sessions) == 1
        sent = backend.sessions[0]
        assert sent.patient_id == "P1"
        assert sent.appointment_id == "A1"
        assert sent.file_size_bytes == 1234
        assert sent.duration_seconds == 5

    async def test_session_create_error_passes_through(self, backend):
        backend.session_failures.append(SessionCreateError("https://store/abc", "db down"))

        with pytest.raises(SessionCreateError) as exc_info:
            await SessionRegistrar(backend).register("https://store/abc", "P1")

        assert exc_info.value.audio_url == "https://store/abc"
        assert "stored safely" in exc_info.value.detail

    async def test_unexpected_error_is_wrapped_with_audio_url(self, backend):
        backend.session_failures.append(RuntimeError("boom"))

        with pytest.raises(SessionCreateError) as exc_info:
            await SessionRegistrar(backend).register("https://store/abc", "P1")

        assert exc_info.value.audio_url == "https://store/abc"
        assert "boom" in exc_info.value.detail

    async def test_retry_reuses_the_same_url(self, backend):
        backend.session_failures.append(RuntimeError("timeout"))
        registrar = SessionRegistrar(backend)

        with pytest.raises(SessionCreateError) as exc_info:
            await registrar.register("https://store/abc", "P1")
        session = await registrar.register(exc_info.value.audio_url, "P1")

        assert session.audio_url == "https://store/abc"
        assert [s.audio_url for s in backend.sessions] == ["https://store/abc"] * 2
