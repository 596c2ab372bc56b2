"""Factories for runtime service selection."""

from __future__ import annotations

from typing import Callable, Optional

from ..config import Settings, get_settings
from ..data.storage import SessionStore
from .credentials import CredentialIssuer, SonioxCredentialIssuer, StaticCredentialIssuer
from .sinks import HttpResultSink, ResultSink, SessionStoreSink
from .transcription.base import StreamingTranscriptionClient
from .transcription.dummy import ScriptedStreamingClient
from .transcription.soniox import SonioxStreamingClient

TRANSCRIPTION_BACKENDS = ("soniox", "dummy")


class ServiceConfigurationError(ValueError):
    """Raised when an unknown backend is requested."""


def _normalise(name: Optional[str]) -> str:
    if not name:
        return "soniox"
    return name.strip().lower()


def resolve_client_factory(name: Optional[str]) -> Callable[[], StreamingTranscriptionClient]:
    """Return a zero-argument callable building a fresh streaming client."""

    backend = _normalise(name)
    if backend == "soniox":
        return SonioxStreamingClient
    if backend == "dummy":
        return ScriptedStreamingClient
    raise ServiceConfigurationError(f"Unknown transcription backend: {name}")


def resolve_credentials(name: Optional[str], settings: Optional[Settings] = None) -> CredentialIssuer:
    settings = settings or get_settings()
    if _normalise(name) == "dummy":
        return StaticCredentialIssuer(websocket_url=settings.soniox_websocket_url)
    return SonioxCredentialIssuer()


def resolve_sink(settings: Optional[Settings] = None) -> ResultSink:
    settings = settings or get_settings()
    if settings.result_endpoint:
        return HttpResultSink(settings.result_endpoint)
    return SessionStoreSink(SessionStore(settings.database_path))


__all__ = [
    "ServiceConfigurationError",
    "TRANSCRIPTION_BACKENDS",
    "resolve_client_factory",
    "resolve_credentials",
    "resolve_sink",
]
