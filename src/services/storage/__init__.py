"""
Storage module - database, repository and durable audio storage.
"""

from src.services.storage.base import BaseBlobStore
from src.services.storage.blob_store import HTTPBlobStore, LocalBlobStore, create_blob_store
from src.services.storage.database import (
    Base,
    close_db,
    get_engine,
    get_session,
    init_db,
    reset_engine,
)
from src.services.storage.models_db import AudioSession, Report, Transcript
from src.services.storage.repository import ClinicRepository
from src.services.storage.uploader import UploadCoordinator

__all__ = [
    "AudioSession",
    "Base",
    "BaseBlobStore",
    "ClinicRepository",
    "HTTPBlobStore",
    "LocalBlobStore",
    "Report",
    "Transcript",
    "UploadCoordinator",
    "close_db",
    "create_blob_store",
    "get_engine",
    "get_session",
    "init_db",
    "reset_engine",
]
