"""Helpers for enumerating audio devices and locating a system-audio loopback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from ...logging import get_logger
from .sounddevice_backend import wasapi_loopback_capable

LOGGER = get_logger(__name__)

# Input device names that carry the system playback mix on common platforms.
LOOPBACK_NAME_HINTS = ("loopback", "monitor", "blackhole", "stereo mix", "what u hear", "soundflower")


@dataclass
class DeviceInfo:
    id: int
    name: str
    max_input_channels: int
    default_samplerate: float
    hostapi: str
    is_loopback: bool


def _looks_like_loopback(name: str) -> bool:
    lowered = name.lower()
    return any(hint in lowered for hint in LOOPBACK_NAME_HINTS)


def list_input_devices(sd_module=None) -> List[DeviceInfo]:
    """Return capture-capable devices, including WASAPI outputs usable as loopback."""

    if sd_module is None:
        try:
            import sounddevice as sd_module
        except ImportError:
            LOGGER.warning("sounddevice not installed; cannot list devices")
            return []

    hostapis = sd_module.query_hostapis()
    results: List[DeviceInfo] = []
    wasapi_loopback_supported: Optional[bool] = None

    for idx, info in enumerate(sd_module.query_devices()):
        hostapi = hostapis[info["hostapi"]]["name"] if hostapis else "unknown"
        name = info["name"]
        max_input = int(info.get("max_input_channels") or 0)
        max_output = int(info.get("max_output_channels") or 0)
        is_loopback = _looks_like_loopback(name)

        if max_input <= 0:
            if "wasapi" not in hostapi.lower() or max_output <= 0:
                continue
            if wasapi_loopback_supported is None:
                wasapi_loopback_supported = wasapi_loopback_capable(sd_module)
            if not wasapi_loopback_supported:
                LOGGER.debug("Skipping WASAPI output %s; loopback unsupported by sounddevice", name)
                continue
            max_input = max_output
            is_loopback = True

        results.append(
            DeviceInfo(
                id=idx,
                name=name,
                max_input_channels=max_input,
                default_samplerate=info.get("default_samplerate", 0.0),
                hostapi=hostapi,
                is_loopback=is_loopback,
            )
        )
    return results


def find_loopback_device(devices: Optional[Iterable[DeviceInfo]] = None) -> Optional[int]:
    """Return the id of the first device that captures system playback."""

    device_list = list_input_devices() if devices is None else list(devices)
    for device in device_list:
        if device.is_loopback:
            return device.id
    return None


def format_device_table(devices: Optional[Iterable[DeviceInfo]] = None) -> str:
    device_list = list_input_devices() if devices is None else list(devices)

    if not device_list:
        return (
            "No input devices detected. Install audio support with "
            "`pip install sounddevice` and ensure audio hardware is accessible."
        )

    header = f"{'ID':>3} | {'Name':<40} | {'In':>2} | {'Rate':>7} | Host API | Loopback"
    lines = [header, "-" * len(header)]
    for device in device_list:
        lines.append(
            f"{device.id:>3} | {device.name:<40.40} | {device.max_input_channels:>2} | "
            f"{int(device.default_samplerate):>7} | {device.hostapi:<8} | {('yes' if device.is_loopback else 'no'):>8}"
        )
    return "\n".join(lines)


__all__ = ["DeviceInfo", "find_loopback_device", "format_device_table", "list_input_devices"]
