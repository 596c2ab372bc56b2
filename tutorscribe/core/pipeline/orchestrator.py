"""Recording orchestrator coordinating capture, streaming, and persistence."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ...config import Settings, get_settings
from ...data.backup import Autosaver, LocalBackup
from ...data.models import RecordingDraft, RecordingResult
from ...logging import get_logger
from ...services.credentials import CredentialIssuer
from ...services.sinks import HandoffError, ResultSink
from ...transcript.segments import BatchUpdate
from ..audio.mixer import AudioMixer, MixerOptions
from .session import ClientFactory, StreamingSessionController
from .state import (
    CancelRequested,
    ConnectingStarted,
    Failed,
    FinalSegmentsUpdated,
    HandoffCompleted,
    LiveSegmentsUpdated,
    RecordingPhase,
    RecordingState,
    RecordingStateMachine,
    StartRequested,
    StopRequested,
    StreamEstablished,
)

LOGGER = get_logger(__name__)

SILENT_FAILURE_KEYWORDS = ("cancel", "dismiss")
RETRY_SUFFIX = " - saved locally and will retry"


class RecordingCancelledError(RuntimeError):
    """Raised by :meth:`RecordingOrchestrator.start` when the attempt was cancelled."""


@dataclass
class RecordingOptions:
    include_system_audio: bool = False
    mic_gain: float = 1.0
    system_gain: float = 1.0
    record_path: Optional[Path] = None


class RecordingOrchestrator:
    """High-level coordinator for one recording at a time.

    Drives the state machine through start, stop and cancel, owning the audio
    mixer, the streaming session controller and the local backup. Failures
    always end in the ``error`` phase with a readable message, except for
    cancelled starts which reset to ``idle``.
    """

    def __init__(
        self,
        credentials: CredentialIssuer,
        client_factory: ClientFactory,
        sink: ResultSink,
        mixer_factory: Optional[Callable[[], AudioMixer]] = None,
        backup: Optional[LocalBackup] = None,
        settings: Optional[Settings] = None,
        machine: Optional[RecordingStateMachine] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or get_settings()
        self.credentials = credentials
        self.sink = sink
        self.backup = backup
        self.machine = machine or RecordingStateMachine()
        self._clock = clock
        self._lock = threading.RLock()
        self._attempt = 0
        self._autosaver: Optional[Autosaver] = None
        self._stopped = threading.Event()
        self._stopped.set()
        self.last_result: Optional[RecordingResult] = None
        self.last_session_id: Optional[str] = None

        self.mixer = mixer_factory() if mixer_factory is not None else AudioMixer()
        self.mixer.add_ended_listener(self._on_mixer_ended)
        self.controller = StreamingSessionController(
            client_factory,
            on_update=self._on_update,
            on_started=self._on_stream_started,
            on_failed=self._on_stream_failed,
            clock=clock,
        )

    @property
    def state(self) -> RecordingState:
        return self.machine.state

    @property
    def phase(self) -> RecordingPhase:
        return self.machine.phase

    def default_options(self) -> RecordingOptions:
        return RecordingOptions(
            include_system_audio=self.settings.include_system_audio,
            mic_gain=self.settings.mic_gain,
            system_gain=self.settings.system_gain,
        )

    # Start

    def start(self, options: Optional[RecordingOptions] = None) -> None:
        options = options or self.default_options()
        with self._lock:
            self.machine.dispatch(StartRequested())
            self._attempt += 1
            attempt = self._attempt

        try:
            self.machine.dispatch(ConnectingStarted())
            credentials = self.credentials.issue()
            self._ensure_current(attempt)
            stream = self.mixer.start(
                MixerOptions(
                    include_system_audio=options.include_system_audio,
                    mic_gain=options.mic_gain,
                    system_gain=options.system_gain,
                    record_path=options.record_path or self._default_record_path(),
                )
            )
            self._ensure_current(attempt)
            self.controller.start(credentials.api_key, credentials.websocket_url, stream)
            self._ensure_current(attempt)
        except Exception as exc:
            with self._lock:
                superseded = attempt != self._attempt
                # A newer start owns the mixer and controller now.
                if not superseded or self.machine.phase is RecordingPhase.IDLE:
                    self._teardown()
            message = str(exc) or "Failed to start recording"
            lowered = message.lower()
            if (
                isinstance(exc, RecordingCancelledError)
                or superseded
                or any(keyword in lowered for keyword in SILENT_FAILURE_KEYWORDS)
            ):
                if not superseded:
                    self.machine.dispatch(CancelRequested())
                LOGGER.info("Recording start cancelled: %s", message)
                if isinstance(exc, RecordingCancelledError):
                    raise
                raise RecordingCancelledError(message) from exc
            LOGGER.error("Recording start failed: %s", message)
            self.machine.try_dispatch(Failed(message))
            raise

        self._start_autosave()
        LOGGER.info("Recording live")

    def _ensure_current(self, attempt: int) -> None:
        if attempt != self._attempt:
            raise RecordingCancelledError("Recording start was cancelled")

    def _default_record_path(self) -> Optional[Path]:
        audio_dir = self.settings.audio_dir
        if audio_dir is None:
            return None
        timestamp = time.strftime("%Y%m%d-%H%M%S", time.localtime(self._clock()))
        return Path(audio_dir) / f"recording-{timestamp}.wav"

    # Stop

    def stop(self) -> Optional[str]:
        """Finish the recording and hand it off; return the stored session id.

        Returns ``None`` when nothing is live. Raises :class:`HandoffError`
        when the sink rejects the result, after queueing it locally.
        """

        with self._lock:
            if self.machine.phase is not RecordingPhase.LIVE:
                LOGGER.info("Stop ignored while %s", self.machine.phase.value)
                return None
            self.machine.dispatch(StopRequested(at=self._clock()))
            self._stopped.clear()

        try:
            return self._finish()
        finally:
            self._stopped.set()

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until a stop running on another thread has handed off."""

        return self._stopped.wait(timeout)

    def _finish(self) -> Optional[str]:
        finished = self.controller.stop(
            reset_start=True,
            wait=True,
            timeout=self.settings.stop_timeout_seconds,
        )
        if not finished:
            LOGGER.warning("Saving the transcript received before the timeout")
        self.mixer.stop()
        self._stop_autosave(save=True)

        state = self.machine.state
        if state.phase is not RecordingPhase.FINISHING:
            LOGGER.info("Recording left finishing (%s) before handoff", state.phase.value)
            return None

        result = RecordingResult(
            transcript=self.controller.transcript_text(),
            duration_ms=state.duration_ms,
            speaker_count=self.controller.speaker_count(),
            started_at=state.started_at,
        )
        return self._hand_off(result)

    def _hand_off(self, result: RecordingResult) -> str:
        self.last_result = result
        try:
            session_id = self.sink.save(result)
        except Exception as exc:
            message = str(exc) or "Failed to save recording"
            if self.backup is not None:
                self.backup.add_to_queue(result)
                self.backup.clear_draft()
                message = f"{message}{RETRY_SUFFIX}"
            LOGGER.error("Handoff failed: %s", message)
            self.machine.try_dispatch(Failed(message))
            raise HandoffError(message) from exc

        self.last_session_id = session_id
        if self.backup is not None:
            self.backup.clear_draft()
        self.machine.try_dispatch(HandoffCompleted())
        LOGGER.info("Recording saved as %s", session_id)
        return session_id

    # Cancel

    def cancel(self) -> None:
        with self._lock:
            self._attempt += 1
            self._teardown()
            if self.backup is not None:
                self.backup.clear_draft()
            self.machine.dispatch(CancelRequested())
        LOGGER.info("Recording cancelled")

    def _teardown(self) -> None:
        self.controller.cancel()
        self.mixer.stop()
        self._stop_autosave()

    # Callbacks

    def _on_stream_started(self, started_at: float) -> None:
        self.machine.try_dispatch(StreamEstablished(started_at=started_at))

    def _on_update(self, update: BatchUpdate) -> None:
        self.machine.try_dispatch(FinalSegmentsUpdated(tuple(update.final), update.speaker_count))
        self.machine.try_dispatch(LiveSegmentsUpdated(tuple(update.live), update.speaker_count))

    def _on_stream_failed(self, message: str) -> None:
        self.mixer.stop()
        self._stop_autosave(save=True)
        self.machine.try_dispatch(Failed(message))

    def _on_mixer_ended(self) -> None:
        if self.machine.phase is not RecordingPhase.LIVE:
            LOGGER.debug("Audio ended while %s", self.machine.phase.value)
            return
        LOGGER.warning("Audio capture ended; finishing the recording")
        try:
            self.stop()
        except HandoffError as exc:
            LOGGER.warning("Recording kept locally: %s", exc)

    # Autosave

    def build_draft(self) -> Optional[RecordingDraft]:
        state = self.machine.state
        if state.phase not in (RecordingPhase.LIVE, RecordingPhase.FINISHING):
            return None
        now = self._clock()
        started_at = state.started_at if state.started_at is not None else now
        return RecordingDraft(
            transcript=self.controller.transcript_text(),
            started_at=started_at,
            duration_ms=int(max(0.0, now - started_at) * 1000),
            speaker_count=self.controller.speaker_count(),
            status=state.phase.value,
            last_saved=now,
        )

    def _start_autosave(self) -> None:
        if self.backup is None:
            return
        self._stop_autosave()
        self._autosaver = Autosaver(self.backup, self.build_draft, interval=self.settings.autosave_seconds)
        self._autosaver.start()

    def _stop_autosave(self, save: bool = False) -> None:
        autosaver, self._autosaver = self._autosaver, None
        if autosaver is None:
            return
        autosaver.stop()
        if save:
            autosaver.save_now()

    def set_mic_gain(self, value: float) -> None:
        self.mixer.set_mic_gain(value)

    def set_system_gain(self, value: float) -> None:
        self.mixer.set_system_gain(value)


__all__ = [
    "RecordingCancelledError",
    "RecordingOptions",
    "RecordingOrchestrator",
]
