"""Streaming transcription client abstractions."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ...core.audio.mixer import MixedStream


class StreamingError(RuntimeError):
    """Raised when a streaming transcription session cannot be established."""


def _noop(*_args: Any) -> None:
    return None


@dataclass
class StreamCallbacks:
    """Callbacks a client invokes while a stream is running.

    ``on_partial_result`` receives the raw token payloads of one response,
    in the order the service sent them.
    """

    on_started: Callable[[], None] = field(default=_noop)
    on_partial_result: Callable[[List[Dict[str, Any]]], None] = field(default=_noop)
    on_finished: Callable[[], None] = field(default=_noop)
    on_error: Callable[[str, str], None] = field(default=_noop)


class StreamingTranscriptionClient(abc.ABC):
    """Send a live audio stream to a speech-to-text service."""

    @abc.abstractmethod
    def start(
        self,
        api_key: str,
        websocket_url: Optional[str],
        audio: MixedStream,
        callbacks: StreamCallbacks,
    ) -> None:
        """Open the connection and begin streaming; returns once started."""

        raise NotImplementedError

    @abc.abstractmethod
    def stop(self) -> None:
        """Signal end of audio; the service flushes its final tokens."""

        raise NotImplementedError

    @abc.abstractmethod
    def cancel(self) -> None:
        """Close the connection immediately without waiting for the service."""

        raise NotImplementedError

    def wait_finished(self, timeout: Optional[float] = None) -> bool:
        return True


__all__ = ["StreamCallbacks", "StreamingError", "StreamingTranscriptionClient"]
