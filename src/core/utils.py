"""Shared utility functions for ClinicScribe."""

import mimetypes
from pathlib import PurePath

_AUDIO_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/aac": "aac",
    "audio/flac": "flac",
}

# Preferred MIME type per extension; mimetypes maps some of these to video/*
_EXTENSION_MIME_TYPES = {
    "webm": "audio/webm",
    "weba": "audio/webm",
    "ogg": "audio/ogg",
    "oga": "audio/ogg",
    "opus": "audio/ogg",
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "flac": "audio/flac",
}


def base_mime_type(mime_type: str) -> str:
    """Strip parameters from a MIME type ("audio/webm;codecs=opus" -> "audio/webm")."""
    return mime_type.split(";", 1)[0].strip().lower()


def is_audio_mime_type(mime_type: str | None) -> bool:
    """Return True for any ``audio/*`` MIME type."""
    if not mime_type:
        return False
    major, _, minor = base_mime_type(mime_type).partition("/")
    return major == "audio" and bool(minor)


def audio_extension(mime_type: str) -> str:
    """File extension (without dot) for an audio MIME type, "bin" if unknown."""
    return _AUDIO_EXTENSIONS.get(base_mime_type(mime_type), "bin")


def mime_type_for_file(name: str) -> str | None:
    """Guess the MIME type of a file from its extension, None if unknown."""
    ext = PurePath(name).suffix.lower().lstrip(".")
    if ext in _EXTENSION_MIME_TYPES:
        return _EXTENSION_MIME_TYPES[ext]
    return mimetypes.guess_type(name)[0]


def format_duration(seconds: int) -> str:
    """Render elapsed seconds as MM:SS."""
    mins, secs = divmod(max(int(seconds), 0), 60)
    return f"{mins:02d}:{secs:02d}"


def format_file_size(size: int) -> str:
    """Human-readable byte count ("1.5 MB")."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    idx = 0
    while size >= 1024 ** (idx + 1) and idx < len(units) - 1:
        idx += 1
    return f"{round(size / 1024**idx, 2):g} {units[idx]}"
