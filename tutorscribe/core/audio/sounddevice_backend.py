"""Audio capture implementation powered by sounddevice/PortAudio."""

from __future__ import annotations

import contextlib
import inspect
import queue
from typing import Optional

import numpy as np

from .base import AudioCapture, CaptureError, CaptureInfo
from ...logging import get_logger

LOGGER = get_logger(__name__)

_FALLBACK_SAMPLE_RATES = (48_000, 44_100, 32_000, 24_000, 22_050, 16_000, 8_000)


class _RejectedChannels(Exception):
    """Internal signal: the device refused the channel count."""


class _RejectedSampleRate(Exception):
    """Internal signal: the device refused the sample rate."""


class SoundDeviceCapture(AudioCapture):
    """Capture stream using the sounddevice library.

    The stream negotiates a working channel count and sample rate with the
    device, enables WASAPI loopback for output devices on Windows, and reports
    through the ended listeners when PortAudio finishes the stream without a
    :meth:`stop` request (device unplugged, loopback revoked).
    """

    def __init__(
        self,
        info: CaptureInfo,
        device: Optional[int | str] = None,
        block_size: int = 1024,
        dtype: str = "float32",
        loopback: bool = False,
    ) -> None:
        try:
            import sounddevice as sd
        except ImportError as exc:  # pragma: no cover - handled in tests
            raise CaptureError("sounddevice dependency is required for capture") from exc

        self._sd = sd
        self.info = info
        self._device = device
        self._block_size = block_size
        self._dtype = dtype
        self._loopback = loopback
        self._queue: queue.Queue[np.ndarray] = queue.Queue()
        self._stream = None
        self._stopping = False
        self._device_info: Optional[dict] = None
        self._extra_settings = None
        self._loopback_channels: Optional[int] = None

    def _callback(self, indata, frames, time_info, status) -> None:  # pragma: no cover - executed in runtime
        if status:
            LOGGER.warning("sounddevice status for %s: %s", self.info.name, status)
        self._queue.put(indata.copy())

    def _finished(self) -> None:
        if self._stopping:
            return
        LOGGER.warning("Capture stream for %s ended unexpectedly", self.info.name)
        self._notify_ended()

    @property
    def is_active(self) -> bool:
        return self._stream is not None and bool(getattr(self._stream, "active", False))

    def start(self) -> None:
        if self._stream is not None:
            return
        LOGGER.info(
            "Starting sounddevice capture for channel %s using device %s",
            self.info.name,
            self._device,
        )
        self._stopping = False
        requested_sample_rate = int(self.info.sample_rate)
        last_error: Optional[Exception] = None

        for channels in self._resolve_channel_candidates():
            for sample_rate in self._resolve_sample_rate_candidates():
                try:
                    stream = self._open_stream(channels, sample_rate)
                except _RejectedChannels as exc:
                    last_error = exc.__cause__
                    break
                except _RejectedSampleRate as exc:
                    last_error = exc.__cause__
                    continue

                self._stream = stream
                self.info.channels = channels
                if sample_rate != requested_sample_rate:
                    LOGGER.warning(
                        "Adjusted sample rate for %s on %s from %s Hz to %s Hz",
                        self.info.name,
                        self._device,
                        requested_sample_rate,
                        sample_rate,
                    )
                self.info.sample_rate = sample_rate
                LOGGER.info(
                    "Configured %s with %s channel(s) at %s Hz",
                    self.info.name,
                    channels,
                    sample_rate,
                )
                return

        error_message = (
            f"Failed to open audio stream for {self.info.name} on {self._device}: "
            "No compatible channel/sample rate combination"
        )
        if last_error is not None:
            error_message = f"{error_message} ({last_error})"
        raise CaptureError(error_message) from last_error

    def _open_stream(self, channels: int, sample_rate: int):
        stream_kwargs = dict(
            samplerate=sample_rate,
            channels=channels,
            dtype=self._dtype,
            blocksize=self._block_size,
            device=self._device,
            callback=self._callback,
            finished_callback=self._finished,
        )
        if self._extra_settings is not None:
            stream_kwargs["extra_settings"] = self._extra_settings

        stream = None
        try:
            stream = self._sd.InputStream(**stream_kwargs)
            stream.start()
        except self._sd.PortAudioError as exc:  # pragma: no cover - depends on runtime device
            if stream is not None:
                with contextlib.suppress(Exception):
                    stream.close()
            message = str(exc)
            lowered = message.lower()
            if "invalid number of channels" in lowered:
                LOGGER.warning(
                    "sounddevice rejected %s channel(s) for %s on %s: %s",
                    channels,
                    self.info.name,
                    self._device,
                    message,
                )
                raise _RejectedChannels() from exc
            if "sample rate" in lowered or "host error" in lowered:
                LOGGER.warning(
                    "sounddevice rejected %s Hz for %s on %s: %s",
                    sample_rate,
                    self.info.name,
                    self._device,
                    message,
                )
                raise _RejectedSampleRate() from exc
            raise CaptureError(message) from exc
        return stream

    def stop(self) -> None:
        if self._stream is not None:
            LOGGER.info("Stopping capture for %s", self.info.name)
            self._stopping = True
            self._stream.stop()

    def close(self) -> None:
        if self._stream is not None:
            LOGGER.debug("Closing capture stream for %s", self.info.name)
            self._stopping = True
            self._stream.close()
            self._stream = None
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except queue.Empty:  # pragma: no cover - defensive
                break

    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        try:
            if timeout is None or timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def _resolve_channel_candidates(self) -> list[int]:
        """Return an ordered list of channel counts to try for the device."""

        requested = int(self.info.channels) if self.info.channels else 0
        candidates: list[int] = [requested] if requested > 0 else []

        device_info = self._query_device_info()
        if device_info:
            max_channels = int(device_info.get("max_input_channels") or 0)
            if max_channels <= 0 and self._loopback_channels:
                max_channels = self._loopback_channels
            if max_channels <= 0:
                raise CaptureError(f"Device {self._device} does not support input channels")
            if requested > max_channels:
                LOGGER.warning(
                    "Requested %s channel(s) for %s exceeds device capability (%s); using supported maximum",
                    requested,
                    self.info.name,
                    max_channels,
                )
            if max_channels not in candidates:
                candidates.append(max_channels)

        if 1 not in candidates:
            candidates.append(1)
        return [channel for channel in candidates if channel > 0]

    def _resolve_sample_rate_candidates(self) -> list[int]:
        """Return an ordered list of sample rates to try for the device."""

        requested = int(self.info.sample_rate) if self.info.sample_rate else 0
        candidates: list[int] = [requested] if requested > 0 else []

        device_info = self._query_device_info()
        if device_info:
            raw = device_info.get("default_samplerate")
            try:
                default_rate = int(float(raw)) if raw is not None else None
            except (TypeError, ValueError):
                LOGGER.debug("Failed to parse default sample rate for %s: %s", self._device, raw)
                default_rate = None
            if default_rate and default_rate not in candidates:
                candidates.append(default_rate)

        for rate in _FALLBACK_SAMPLE_RATES:
            if rate not in candidates:
                candidates.append(rate)
        return candidates

    def _query_device_info(self) -> Optional[dict]:
        """Return cached device information, querying the backend if necessary."""

        if self._device_info is not None:
            return self._device_info

        kind = None
        if self._device is None:
            kind = "output" if self._loopback else "input"
        try:  # pragma: no cover - depends on runtime availability
            info = self._sd.query_devices(self._device, kind=kind)
        except Exception as exc:  # pragma: no cover - depends on runtime availability
            LOGGER.debug("Failed to query device info for %s: %s", self._device, exc)
            return None

        self._device_info = dict(info)
        if self._device is None and self._loopback and "index" in self._device_info:
            # Loopback on the default output must name the device explicitly.
            self._device = int(self._device_info["index"])
        self._configure_loopback(self._device_info)
        return self._device_info

    def _configure_loopback(self, info: dict) -> None:
        if self._loopback_channels:
            return
        if int(info.get("max_input_channels") or 0) > 0:
            return

        hostapi_name = ""
        hostapi_index = info.get("hostapi")
        try:  # pragma: no cover - depends on runtime availability
            if hostapi_index is not None:
                hostapi_name = str(self._sd.query_hostapis(int(hostapi_index)).get("name", ""))
        except Exception as exc:  # pragma: no cover - defensive
            LOGGER.debug("Failed to query hostapi info for %s: %s", self._device, exc)

        max_output = int(info.get("max_output_channels") or 0)
        if "wasapi" not in hostapi_name.lower() or max_output <= 0:
            return

        self._extra_settings = prepare_wasapi_loopback_settings(self._sd)
        self._loopback_channels = max_output
        LOGGER.info("Configured WASAPI loopback capture for %s", self._device)


def _loopback_keyword_supported(settings_factory) -> bool:
    try:
        signature = inspect.signature(settings_factory)
    except (TypeError, ValueError):  # pragma: no cover - builtin or Cython callable
        return False
    parameter = signature.parameters.get("loopback")
    return parameter is not None and parameter.kind in (
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
        inspect.Parameter.KEYWORD_ONLY,
    )


def _loopback_flag_target(sd_module, settings):
    contents = getattr(getattr(settings, "_streaminfo", None), "contents", None)
    lib = getattr(sd_module, "_lib", None)
    flag = getattr(lib, "paWinWasapiLoopback", None) if lib is not None else None
    if contents is None or not hasattr(contents, "flags") or flag is None:
        return None, None
    return contents, flag


def prepare_wasapi_loopback_settings(sd_module):
    """Return WASAPI settings configured for loopback capture.

    Uses the ``loopback`` keyword of recent ``sounddevice`` releases and falls
    back to setting the PortAudio stream info flag on older wheels.
    """

    settings_factory = getattr(sd_module, "WasapiSettings", None)
    if settings_factory is None:
        raise CaptureError(
            "sounddevice installation does not expose WasapiSettings; "
            "upgrade to a version with WASAPI loopback support"
        )

    if _loopback_keyword_supported(settings_factory):
        try:
            return settings_factory(loopback=True)
        except TypeError:
            LOGGER.debug("WasapiSettings rejected loopback keyword; using fallback")

    try:
        settings = settings_factory()
    except Exception as exc:  # pragma: no cover - defensive
        raise CaptureError(f"sounddevice failed to instantiate WasapiSettings: {exc}") from exc

    contents, flag = _loopback_flag_target(sd_module, settings)
    if contents is None:
        raise CaptureError(
            "sounddevice installation does not support enabling WASAPI loopback capture"
        )
    contents.flags |= flag
    return settings


def wasapi_loopback_capable(sd_module) -> bool:
    """Return ``True`` when the sounddevice module can configure loopback."""

    settings_factory = getattr(sd_module, "WasapiSettings", None)
    if settings_factory is None:
        return False
    if _loopback_keyword_supported(settings_factory):
        return True
    try:
        settings = settings_factory()
    except Exception:  # pragma: no cover - defensive
        return False
    contents, _flag = _loopback_flag_target(sd_module, settings)
    return contents is not None


__all__ = [
    "SoundDeviceCapture",
    "prepare_wasapi_loopback_settings",
    "wasapi_loopback_capable",
]
