"""Microphone and system-audio mixer feeding the transcription stream."""

from __future__ import annotations

import contextlib
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from ...config import get_settings
from ...logging import get_logger
from ...utils.audio import AutoGain, apply_noise_gate, ensure_mono, resample
from .base import (
    LOOPBACK_PROCESSING,
    MICROPHONE_PROCESSING,
    AudioCapture,
    CaptureProcessing,
    MicrophoneAccessError,
)
from .factory import MICROPHONE_CHANNEL, SYSTEM_CHANNEL, CaptureRequest, create_capture
from .writers import AudioFileWriter

LOGGER = get_logger(__name__)

CaptureFactory = Callable[[CaptureRequest], AudioCapture]

# Upper bound for buffered system audio waiting for the microphone clock.
_MAX_SYSTEM_BUFFER_SECONDS = 1.0


@dataclass
class MixerOptions:
    include_system_audio: bool = False
    mic_gain: float = 1.0
    system_gain: float = 1.0
    record_path: Optional[Path] = None


class GainNode:
    """Live-adjustable linear gain."""

    def __init__(self, value: float = 1.0) -> None:
        self._value = 1.0
        self.value = value

    @property
    def value(self) -> float:
        return self._value

    @value.setter
    def value(self, value: float) -> None:
        value = float(value)
        if value < 0:
            raise ValueError("Gain must be non-negative")
        self._value = value

    def process(self, data: np.ndarray) -> np.ndarray:
        return data * np.float32(self._value)


class ProcessingChain:
    """Voice processing applied to one capture channel before gain."""

    def __init__(
        self,
        processing: CaptureProcessing,
        noise_gate_threshold: float = 0.0,
        auto_gain: Optional[AutoGain] = None,
    ) -> None:
        self.processing = processing
        self.noise_gate_threshold = noise_gate_threshold if processing.noise_suppression else 0.0
        self.auto_gain = auto_gain if processing.auto_gain else None
        if processing.echo_cancellation:
            LOGGER.debug("Echo cancellation requested but not available; passing audio through")

    def process(self, data: np.ndarray) -> np.ndarray:
        if self.noise_gate_threshold > 0:
            data = apply_noise_gate(data, self.noise_gate_threshold)
        if self.auto_gain is not None:
            data = self.auto_gain.process(data)
        return data


class MixedStream:
    """Single mono output of the mixer, consumed by the transcription client."""

    def __init__(self, sample_rate: int, max_chunks: int = 512) -> None:
        self.sample_rate = sample_rate
        self.channels = 1
        self._queue: queue.Queue[np.ndarray] = queue.Queue(maxsize=max_chunks)
        self._ended = threading.Event()

    def push(self, chunk: np.ndarray) -> None:
        if self._ended.is_set():
            return
        while True:
            try:
                self._queue.put_nowait(chunk)
                return
            except queue.Full:
                # Slow consumer: drop the oldest chunk rather than block capture.
                with contextlib.suppress(queue.Empty):
                    self._queue.get_nowait()

    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        try:
            if timeout is None or timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def end(self) -> None:
        self._ended.set()

    @property
    def ended(self) -> bool:
        return self._ended.is_set()

    @property
    def is_active(self) -> bool:
        return not self._ended.is_set()

    def wait_ended(self, timeout: Optional[float] = None) -> bool:
        return self._ended.wait(timeout)


class AudioMixer:
    """Acquire the microphone and optional system audio and mix them.

    Each source runs through its own :class:`GainNode` into one
    :class:`MixedStream`. The microphone is mandatory; system audio is best
    effort. Losing the system capture mid-session stops the whole mixer,
    since the loopback permission is what the session was started with.
    """

    def __init__(
        self,
        capture_factory: Optional[CaptureFactory] = None,
        sample_rate: Optional[int] = None,
        block_size: Optional[int] = None,
        voice_processing: bool = True,
    ) -> None:
        settings = get_settings()
        self._capture_factory = capture_factory or create_capture
        self.sample_rate = int(sample_rate or settings.sample_rate)
        self.block_size = int(block_size or settings.block_size)
        self._noise_gate_threshold = settings.noise_gate_threshold
        self._auto_gain_target = settings.auto_gain_target_rms
        self._auto_gain_max = settings.auto_gain_max
        self._voice_processing = voice_processing
        self._lock = threading.RLock()
        self._mic: Optional[AudioCapture] = None
        self._system: Optional[AudioCapture] = None
        self._mic_gain: Optional[GainNode] = None
        self._system_gain: Optional[GainNode] = None
        self._stream: Optional[MixedStream] = None
        self._writer: Optional[AudioFileWriter] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._ended_listeners: List[Callable[[], None]] = []

    @property
    def stream(self) -> Optional[MixedStream]:
        return self._stream

    @property
    def active_captures(self) -> int:
        return sum(1 for capture in (self._mic, self._system) if capture is not None)

    @property
    def has_system_audio(self) -> bool:
        return self._system is not None

    def add_ended_listener(self, listener: Callable[[], None]) -> None:
        self._ended_listeners.append(listener)

    def start(self, options: MixerOptions) -> MixedStream:
        with self._lock:
            self.stop()
            self._stop_event = threading.Event()

            mic_request = CaptureRequest(
                channel=MICROPHONE_CHANNEL,
                device=get_settings().mic_device,
                sample_rate=self.sample_rate,
                block_size=self.block_size,
                processing=MICROPHONE_PROCESSING,
            )
            try:
                mic = self._capture_factory(mic_request)
                self._mic = mic
                mic.start()
            except Exception as exc:
                LOGGER.error("Microphone capture failed: %s", exc)
                self.stop()
                raise MicrophoneAccessError(f"Microphone unavailable: {exc}") from exc
            mic.add_ended_listener(lambda: self._on_capture_ended(mic))
            self._mic_gain = GainNode(options.mic_gain)

            if options.include_system_audio:
                self._start_system_audio(options)

            if options.record_path is not None:
                self._writer = AudioFileWriter(options.record_path, self.sample_rate, 1)

            stream = MixedStream(self.sample_rate)
            self._stream = stream
            self._thread = threading.Thread(
                target=self._run,
                args=(
                    stream,
                    mic,
                    self._system,
                    self._build_chain(MICROPHONE_PROCESSING),
                    self._build_chain(LOOPBACK_PROCESSING),
                    self._mic_gain,
                    self._system_gain,
                    self._writer,
                    self._stop_event,
                ),
                name="tutorscribe-mixer",
                daemon=True,
            )
            self._thread.start()
            LOGGER.info(
                "Mixer started at %s Hz (system audio: %s)",
                self.sample_rate,
                "on" if self._system is not None else "off",
            )
            return stream

    def _start_system_audio(self, options: MixerOptions) -> None:
        request = CaptureRequest(
            channel=SYSTEM_CHANNEL,
            device=get_settings().system_device,
            sample_rate=self.sample_rate,
            channels=2,
            block_size=self.block_size,
            processing=LOOPBACK_PROCESSING,
            loopback=True,
        )
        capture: Optional[AudioCapture] = None
        try:
            capture = self._capture_factory(request)
            capture.start()
        except Exception as exc:
            LOGGER.warning("System audio capture failed; continuing with microphone only: %s", exc)
            if capture is not None:
                with contextlib.suppress(Exception):
                    capture.close()
            return

        capture.add_ended_listener(lambda: self._on_capture_ended(capture))
        self._system = capture
        self._system_gain = GainNode(options.system_gain)

    def _build_chain(self, processing: CaptureProcessing) -> ProcessingChain:
        if not self._voice_processing:
            processing = CaptureProcessing()
        return ProcessingChain(
            processing,
            noise_gate_threshold=self._noise_gate_threshold,
            auto_gain=AutoGain(target_rms=self._auto_gain_target, max_gain=self._auto_gain_max),
        )

    def _on_capture_ended(self, capture: AudioCapture) -> None:
        # Runs on a PortAudio thread; tear down from a worker instead.
        threading.Thread(
            target=self._handle_capture_ended,
            args=(capture,),
            name="tutorscribe-mixer-ended",
            daemon=True,
        ).start()

    def _handle_capture_ended(self, capture: AudioCapture) -> None:
        with self._lock:
            if capture is not self._mic and capture is not self._system:
                return
            LOGGER.warning("%s capture ended; stopping the mixed recording", capture.info.name)
            self.stop()
        for listener in list(self._ended_listeners):
            try:
                listener()
            except Exception:  # pragma: no cover - listeners should not break teardown
                LOGGER.exception("Mixer ended listener raised an exception")

    def _prepare(self, chunk: np.ndarray, source_rate: int, chain: ProcessingChain) -> np.ndarray:
        mono = ensure_mono(chunk)
        mono = resample(mono, int(source_rate), self.sample_rate)
        return chain.process(mono)

    def _run(
        self,
        stream: MixedStream,
        mic: AudioCapture,
        system: Optional[AudioCapture],
        mic_chain: ProcessingChain,
        system_chain: ProcessingChain,
        mic_gain: GainNode,
        system_gain: Optional[GainNode],
        writer: Optional[AudioFileWriter],
        stop_event: threading.Event,
    ) -> None:
        system_buffer = np.zeros(0, dtype=np.float32)
        max_buffer = int(self.sample_rate * _MAX_SYSTEM_BUFFER_SECONDS)
        try:
            while not stop_event.is_set():
                if system is not None:
                    while True:
                        chunk = system.read(timeout=0)
                        if chunk is None:
                            break
                        prepared = self._prepare(chunk, system.info.sample_rate, system_chain)
                        system_buffer = np.concatenate([system_buffer, prepared])
                    if system_buffer.shape[0] > max_buffer:
                        system_buffer = system_buffer[-max_buffer:]

                chunk = mic.read(timeout=0.05)
                if chunk is None:
                    continue
                mixed = mic_gain.process(self._prepare(chunk, mic.info.sample_rate, mic_chain))
                if system_gain is not None and system_buffer.size:
                    take = system_buffer[: mixed.shape[0]]
                    system_buffer = system_buffer[take.shape[0]:]
                    mixed[: take.shape[0]] += system_gain.process(take)
                mixed = np.clip(mixed, -1.0, 1.0).astype(np.float32, copy=False)
                stream.push(mixed)
                if writer is not None:
                    writer.write(mixed)
        except Exception:
            LOGGER.exception("Mixer loop failed")
        finally:
            stream.end()

    def set_mic_gain(self, value: float) -> None:
        if self._mic_gain is not None:
            self._mic_gain.value = value

    def set_system_gain(self, value: float) -> None:
        if self._system_gain is not None:
            self._system_gain.value = value

    def stop(self) -> None:
        """Stop every capture and release the graph. Safe to call repeatedly."""

        with self._lock:
            self._stop_event.set()
            thread, self._thread = self._thread, None
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=2.0)

            for capture in (self._mic, self._system):
                if capture is None:
                    continue
                with contextlib.suppress(Exception):
                    capture.stop()
                with contextlib.suppress(Exception):
                    capture.close()
            self._mic = None
            self._system = None
            self._mic_gain = None
            self._system_gain = None

            if self._writer is not None:
                with contextlib.suppress(Exception):
                    self._writer.close()
                self._writer = None

            if self._stream is not None:
                self._stream.end()
                LOGGER.info("Mixer stopped")
            self._stream = None


__all__ = [
    "AudioMixer",
    "GainNode",
    "MixedStream",
    "MixerOptions",
    "ProcessingChain",
]
