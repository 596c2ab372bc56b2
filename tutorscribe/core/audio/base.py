"""Audio capture abstractions."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from ...logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class CaptureInfo:
    """Metadata about a capture channel."""

    name: str
    sample_rate: int
    channels: int
    device: Optional[str] = None


@dataclass(frozen=True)
class CaptureProcessing:
    """Voice processing requested for a capture channel."""

    echo_cancellation: bool = False
    noise_suppression: bool = False
    auto_gain: bool = False


MICROPHONE_PROCESSING = CaptureProcessing(
    echo_cancellation=False,
    noise_suppression=True,
    auto_gain=True,
)
LOOPBACK_PROCESSING = CaptureProcessing()


class AudioCapture(abc.ABC):
    """Abstract capture stream that yields numpy chunks."""

    info: CaptureInfo

    @abc.abstractmethod
    def start(self) -> None:
        """Start the underlying capture stream."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop the underlying capture stream."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release all resources associated with the stream."""

    @abc.abstractmethod
    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        """Return the next available chunk or ``None`` if none ready."""

    @property
    def is_active(self) -> bool:
        return False

    def add_ended_listener(self, listener: Callable[[], None]) -> None:
        """Register ``listener`` to run when the stream ends on its own."""

        if not hasattr(self, "_ended_listeners"):
            self._ended_listeners: List[Callable[[], None]] = []
        self._ended_listeners.append(listener)

    def _notify_ended(self) -> None:
        for listener in list(getattr(self, "_ended_listeners", [])):
            try:
                listener()
            except Exception:  # pragma: no cover - listeners should not break capture
                LOGGER.exception("Capture ended listener raised an exception")


class CaptureError(RuntimeError):
    """Raised when audio capture cannot be initialised."""


class MicrophoneAccessError(CaptureError):
    """Raised when the microphone is unavailable or access was denied."""


__all__ = [
    "AudioCapture",
    "CaptureError",
    "CaptureInfo",
    "CaptureProcessing",
    "LOOPBACK_PROCESSING",
    "MICROPHONE_PROCESSING",
    "MicrophoneAccessError",
]
