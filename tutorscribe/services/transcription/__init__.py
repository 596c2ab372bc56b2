"""Streaming transcription clients."""

from .base import StreamCallbacks, StreamingError, StreamingTranscriptionClient
from .dummy import ScriptedStreamingClient

__all__ = [
    "ScriptedStreamingClient",
    "StreamCallbacks",
    "StreamingError",
    "StreamingTranscriptionClient",
]
