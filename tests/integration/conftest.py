"""Integration test fixtures for ClinicScribe.

Provides an async HTTP client over the real FastAPI app, backed by an
in-memory SQLite database, a temporary local blob store and a mock STT
engine.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.api.routes.audio import get_blob_store, get_stt
from src.services.storage import database
from src.services.storage.blob_store import LocalBlobStore

FILES_URL = "http://test/api/v1/audio/files"


@pytest.fixture
def local_store(tmp_path):
    """Local store under a temp dir, serving files through the test app."""
    return LocalBlobStore(root=tmp_path / "recordings", public_url=FILES_URL)


@pytest.fixture
def app(local_store, mock_stt):
    """Create a fresh FastAPI application with storage and STT overridden."""
    application = create_app()
    application.dependency_overrides[get_blob_store] = lambda: local_store
    application.dependency_overrides[get_stt] = lambda: mock_stt
    return application


@pytest.fixture
async def async_client(app, db_engine):
    """AsyncClient backed by the in-memory test engine.

    Injects the test engine into the database module so that all routes
    use the same in-memory SQLite with tables already created.
    """
    database._engine = db_engine
    database._session_factory = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    database.reset_engine()
