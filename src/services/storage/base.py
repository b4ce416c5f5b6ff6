"""
Abstract base class for durable audio storage.

Blob stores receive the finalized recording bytes and return the URL at
which they are durably stored. Validation happens in the upload
coordinator before a store is ever called.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

# (bytes_sent, total_bytes)
ByteProgressCallback = Callable[[int, int], None]


class BaseBlobStore(ABC):
    """Interface that every storage provider must implement."""

    @abstractmethod
    async def upload(
        self,
        data: bytes,
        *,
        mime_type: str,
        patient_id: str,
        appointment_id: str | None = None,
        on_progress: ByteProgressCallback | None = None,
    ) -> str:
        """Store *data* and return its durable URL.

        Args:
            data: Opaque recorded container bytes.
            mime_type: Content type of the container.
            patient_id: Owner of the recording; used as the storage prefix.
            appointment_id: Optional appointment the recording belongs to.
            on_progress: Called with ``(bytes_sent, total_bytes)`` as the
                transfer advances.

        Raises:
            UploadError: If the transfer fails.
        """
