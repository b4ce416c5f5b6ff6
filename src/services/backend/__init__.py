"""
Backend module - session, transcription and report collaborators.

Factory function for creating a backend based on provider configuration.
"""

from .base import BaseBackend, BaseReportAPI, BaseSessionAPI, BaseTranscriptionAPI

__all__ = [
    "BaseBackend",
    "BaseReportAPI",
    "BaseSessionAPI",
    "BaseTranscriptionAPI",
    "create_backend",
]


def create_backend(provider: str, **kwargs) -> BaseBackend:
    """
    Factory function to create a backend based on provider.

    Args:
        provider: "http" for the backend service, "local" for in-process
        **kwargs: Provider-specific configuration

    Raises:
        ValueError: If provider is unknown
    """
    if provider == "http":
        from .http import BackendClient
        return BackendClient(**kwargs)
    elif provider == "local":
        from .local import LocalBackend
        return LocalBackend(**kwargs)
    else:
        raise ValueError(f"Unknown backend provider: {provider}")
