"""Factory helpers for constructing audio capture instances."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ...logging import get_logger
from .base import AudioCapture, CaptureError, CaptureInfo, CaptureProcessing

LOGGER = get_logger(__name__)

MICROPHONE_CHANNEL = "microphone"
SYSTEM_CHANNEL = "system"


class CaptureConfigurationError(RuntimeError):
    """Raised when a capture stream cannot be configured."""


@dataclass
class CaptureRequest:
    """Description of a capture channel requested by the mixer."""

    channel: str
    device: Optional[str]
    sample_rate: int
    channels: int = 1
    block_size: int = 1024
    processing: CaptureProcessing = field(default_factory=CaptureProcessing)
    loopback: bool = False


def _parse_device(device: Optional[str]) -> Optional[int | str]:
    if device is None:
        return None
    device = device.strip()
    if not device:
        return None
    if device.isdigit():
        return int(device)
    return device


def _resolve_loopback_device() -> Optional[int]:
    try:
        from .devices import find_loopback_device
    except ImportError:  # pragma: no cover - optional dependency
        return None
    try:
        return find_loopback_device()
    except Exception as exc:  # pragma: no cover - depends on runtime devices
        LOGGER.debug("Loopback device discovery failed: %s", exc)
        return None


def create_capture(request: CaptureRequest) -> AudioCapture:
    """Create a sounddevice-backed :class:`AudioCapture` for ``request``."""

    try:
        from .sounddevice_backend import SoundDeviceCapture
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise CaptureConfigurationError(
            "sounddevice dependency is required for audio capture"
        ) from exc

    device = _parse_device(request.device)
    if device is None and request.loopback:
        device = _resolve_loopback_device()
        if device is not None:
            LOGGER.info("Using loopback device %s for %s", device, request.channel)

    info = CaptureInfo(
        name=request.channel,
        sample_rate=request.sample_rate,
        channels=request.channels,
        device="default" if device is None else str(device),
    )
    try:
        return SoundDeviceCapture(
            info=info,
            device=device,
            block_size=request.block_size,
            loopback=request.loopback,
        )
    except CaptureError as exc:
        raise CaptureConfigurationError(str(exc)) from exc


__all__ = [
    "CaptureConfigurationError",
    "CaptureRequest",
    "MICROPHONE_CHANNEL",
    "SYSTEM_CHANNEL",
    "create_capture",
]
