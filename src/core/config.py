"""
Application configuration via pydantic-settings.

Loads values from .env file with sensible defaults for local development.
Use ``get_settings()`` to obtain the cached singleton instance.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_REPORT_TEMPLATES = [
    {"id": "resumo", "display_name": "Resumo de Sessão", "report_type": "evolution"},
    {"id": "encaminhamento", "display_name": "Encaminhamento Escolar", "report_type": "evolution"},
    {"id": "mensal", "display_name": "Relatório de Evolução Mensal", "report_type": "monthly"},
    {"id": "avaliacao", "display_name": "Relatório de Avaliação Inicial", "report_type": "evaluation"},
    {"id": "alta", "display_name": "Relatório de Alta", "report_type": "discharge"},
]


class Settings(BaseSettings):
    """ClinicScribe settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive).

    Attributes:
        backend_provider: How the pipeline reaches sessions/transcription/reports
            ("http" for the backend service, "local" for in-process).
        storage_provider: Where recordings are uploaded ("local" or "http").
        whisper_provider: STT backend ("local" for faster-whisper, "huggingface").
        database_url: Async SQLAlchemy connection string for SQLite.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Backend wiring ---
    backend_provider: str = "http"
    api_base_url: str = "http://localhost:8000"
    api_timeout: float = 30.0  # Seconds, for every call except transcription

    # --- Storage ---
    # Paths are relative to the project root; absolute paths also supported
    storage_provider: str = "http"
    recordings_dir: str = "data/recordings"
    # Public prefix for stored files, e.g. "http://localhost:8000/api/v1/audio/files".
    # Empty = local stores return file:// URIs.
    storage_public_url: str = ""
    max_upload_bytes: int = 100 * 1024 * 1024
    upload_chunk_size: int = 256 * 1024

    # --- Capture ---
    capture_sample_rate: int = 16000
    capture_channels: int = 1
    capture_device: int | None = None  # sounddevice input index; None = system default
    recorder_tick_interval: float = 1.0

    # --- Speech-to-text ---
    whisper_provider: str = "local"
    whisper_model: str = "base"  # Model size: tiny, base, small, medium, large-v3
    whisper_device: str = "cpu"
    whisper_compute_type: str = "int8"
    huggingface_api_key: str = ""  # Required when whisper_provider="huggingface"
    huggingface_model: str = "openai/whisper-large-v3"
    huggingface_base_url: str = "https://api-inference.huggingface.co/models"
    default_language: str = "pt"  # ISO 639-1 hint sent with every transcription
    # Client-side bound on one transcription call; None disables the timeout
    transcription_timeout_seconds: float | None = 300.0
    stt_timeout_seconds: float | None = 280.0  # Server-side engine bound

    # --- Review ---
    report_templates: list[dict] = _DEFAULT_REPORT_TEMPLATES
    default_template_id: str = "resumo"

    # --- Application ---
    app_host: str = "0.0.0.0"  # Bind address for the FastAPI server
    app_port: int = 8000
    log_level: str = "INFO"  # Python logging level
    cors_origins: list[str] = ["http://localhost:3000"]
    database_url: str = "sqlite+aiosqlite:///data/clinicscribe.db"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
