"""Audio capture package."""

from .base import (
    AudioCapture,
    CaptureError,
    CaptureInfo,
    CaptureProcessing,
    MicrophoneAccessError,
)

__all__ = [
    "AudioCapture",
    "CaptureError",
    "CaptureInfo",
    "CaptureProcessing",
    "MicrophoneAccessError",
]
