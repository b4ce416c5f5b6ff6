"""Loads an existing audio file as a Recording, in place of a microphone take.

The bytes are kept as they are on disk. Type and size checks belong to
the upload stage, which rejects the file the same way it rejects a bad
microphone take.
"""

import asyncio
import logging
from pathlib import Path

import soundfile as sf

from src.core.exceptions import AudioFileNotFoundError
from src.core.models import Recording
from src.core.utils import mime_type_for_file

logger = logging.getLogger(__name__)


def read_duration(path: Path) -> int:
    """Whole seconds of audio in *path*; 0 when libsndfile cannot decode it."""
    try:
        return int(sf.info(str(path)).duration)
    except (sf.SoundFileError, RuntimeError):
        return 0


async def load_audio_file(path: str | Path) -> Recording:
    """Read *path* into a Recording.

    Raises:
        AudioFileNotFoundError: If *path* is missing or not a file.
    """
    path = Path(path).expanduser()
    try:
        data = await asyncio.to_thread(path.read_bytes)
    except (FileNotFoundError, IsADirectoryError) as exc:
        raise AudioFileNotFoundError(str(path)) from exc

    duration = await asyncio.to_thread(read_duration, path) if data else 0
    recording = Recording(
        data=data,
        duration_seconds=duration,
        mime_type=mime_type_for_file(path.name) or "",
    )
    logger.info(
        "Loaded %s: %d bytes, %ds, %s",
        path.name,
        recording.size,
        recording.duration_seconds,
        recording.mime_type or "unknown type",
    )
    return recording
