"""Recording state machine: phases, events and the transition function."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

from ...logging import get_logger
from ...transcript.segments import Segment, copy_segments, format_transcript

LOGGER = get_logger(__name__)


class RecordingPhase(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    CONNECTING = "connecting"
    LIVE = "live"
    FINISHING = "finishing"
    FINISHED = "finished"
    ERROR = "error"


AT_REST_PHASES = frozenset({RecordingPhase.IDLE, RecordingPhase.ERROR, RecordingPhase.FINISHED})
BUSY_PHASES = frozenset({RecordingPhase.REQUESTING, RecordingPhase.CONNECTING})
SEGMENT_PHASES = frozenset({RecordingPhase.CONNECTING, RecordingPhase.LIVE, RecordingPhase.FINISHING})


@dataclass(frozen=True)
class RecordingState:
    phase: RecordingPhase = RecordingPhase.IDLE
    live_segments: Tuple[Segment, ...] = ()
    final_segments: Tuple[Segment, ...] = ()
    error_message: Optional[str] = None
    started_at: Optional[float] = None
    duration_ms: int = 0
    speaker_count: int = 0

    @property
    def live_text(self) -> str:
        return format_transcript(self.live_segments)

    @property
    def final_text(self) -> str:
        return format_transcript(self.final_segments)


INITIAL_STATE = RecordingState()


# Events


@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class ConnectingStarted:
    pass


@dataclass(frozen=True)
class StreamEstablished:
    started_at: float


@dataclass(frozen=True)
class LiveSegmentsUpdated:
    segments: Tuple[Segment, ...] = field(default_factory=tuple)
    speaker_count: int = 0


@dataclass(frozen=True)
class FinalSegmentsUpdated:
    segments: Tuple[Segment, ...] = field(default_factory=tuple)
    speaker_count: int = 0


@dataclass(frozen=True)
class StopRequested:
    at: float


@dataclass(frozen=True)
class HandoffCompleted:
    pass


@dataclass(frozen=True)
class Failed:
    message: str


@dataclass(frozen=True)
class CancelRequested:
    pass


RecordingEvent = Union[
    StartRequested,
    ConnectingStarted,
    StreamEstablished,
    LiveSegmentsUpdated,
    FinalSegmentsUpdated,
    StopRequested,
    HandoffCompleted,
    Failed,
    CancelRequested,
]


class InvalidTransitionError(RuntimeError):
    """Raised when an event is not legal in the current phase."""

    def __init__(self, phase: RecordingPhase, event: object) -> None:
        super().__init__(f"{type(event).__name__} is not allowed while {phase.value}")
        self.phase = phase
        self.event = event


def _require(state: RecordingState, event: object, allowed: frozenset) -> None:
    if state.phase not in allowed:
        raise InvalidTransitionError(state.phase, event)


def _frozen(segments: Sequence[Segment]) -> Tuple[Segment, ...]:
    return tuple(copy_segments(segments))


def transition(state: RecordingState, event: RecordingEvent) -> RecordingState:
    """Return the state after ``event``; raise if the event is illegal now."""

    if isinstance(event, StartRequested):
        _require(state, event, AT_REST_PHASES)
        return replace(INITIAL_STATE, phase=RecordingPhase.REQUESTING)
    if isinstance(event, ConnectingStarted):
        _require(state, event, frozenset({RecordingPhase.REQUESTING}))
        return replace(state, phase=RecordingPhase.CONNECTING, error_message=None)
    if isinstance(event, StreamEstablished):
        _require(state, event, frozenset({RecordingPhase.CONNECTING}))
        return replace(
            state,
            phase=RecordingPhase.LIVE,
            started_at=event.started_at,
            error_message=None,
        )
    if isinstance(event, LiveSegmentsUpdated):
        _require(state, event, SEGMENT_PHASES)
        return replace(state, live_segments=_frozen(event.segments), speaker_count=event.speaker_count)
    if isinstance(event, FinalSegmentsUpdated):
        _require(state, event, SEGMENT_PHASES)
        return replace(state, final_segments=_frozen(event.segments), speaker_count=event.speaker_count)
    if isinstance(event, StopRequested):
        _require(state, event, frozenset({RecordingPhase.LIVE}))
        elapsed = 0 if state.started_at is None else max(0.0, event.at - state.started_at)
        return replace(state, phase=RecordingPhase.FINISHING, duration_ms=int(round(elapsed * 1000)))
    if isinstance(event, HandoffCompleted):
        _require(state, event, frozenset({RecordingPhase.FINISHING}))
        return replace(state, phase=RecordingPhase.FINISHED, error_message=None)
    if isinstance(event, Failed):
        return replace(state, phase=RecordingPhase.ERROR, error_message=event.message)
    if isinstance(event, CancelRequested):
        return INITIAL_STATE
    raise TypeError(f"Unhandled recording event: {event!r}")


@dataclass(frozen=True)
class RecordingControls:
    start_enabled: bool
    stop_enabled: bool
    cancel_enabled: bool


def controls_for(phase: RecordingPhase) -> RecordingControls:
    return RecordingControls(
        start_enabled=phase in AT_REST_PHASES,
        stop_enabled=phase is RecordingPhase.LIVE,
        cancel_enabled=phase not in AT_REST_PHASES and phase not in BUSY_PHASES,
    )


def status_for(state: RecordingState) -> Tuple[str, str]:
    """Return the ``(label, tone)`` pair shown for ``state``."""

    labels = {
        RecordingPhase.IDLE: ("Idle", "idle"),
        RecordingPhase.REQUESTING: ("Requesting permissions", "busy"),
        RecordingPhase.CONNECTING: ("Connecting to Soniox", "busy"),
        RecordingPhase.LIVE: ("Live", "live"),
        RecordingPhase.FINISHING: ("Finishing", "busy"),
        RecordingPhase.FINISHED: ("Finished", "idle"),
    }
    if state.phase is RecordingPhase.ERROR:
        return state.error_message or "Error", "error"
    return labels[state.phase]


Listener = Callable[[RecordingState], None]


class RecordingStateMachine:
    """Thread-safe holder of the current :class:`RecordingState`."""

    def __init__(self, state: RecordingState = INITIAL_STATE) -> None:
        self._state = state
        self._lock = threading.RLock()
        # Held across transition and notification so listeners see states in order.
        self._notify_lock = threading.RLock()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def phase(self) -> RecordingPhase:
        return self._state.phase

    @property
    def controls(self) -> RecordingControls:
        return controls_for(self._state.phase)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def dispatch(self, event: RecordingEvent) -> RecordingState:
        with self._notify_lock:
            with self._lock:
                previous = self._state
                self._state = transition(previous, event)
                state = self._state
                listeners = list(self._listeners)
            if state.phase is not previous.phase:
                LOGGER.debug("Recording phase %s -> %s", previous.phase.value, state.phase.value)
            for listener in listeners:
                try:
                    listener(state)
                except Exception:  # pragma: no cover - listeners should not break the machine
                    LOGGER.exception("Recording state listener raised an exception")
        return state

    def try_dispatch(self, event: RecordingEvent) -> Optional[RecordingState]:
        """Dispatch ``event`` if legal; return ``None`` when it was rejected."""

        try:
            return self.dispatch(event)
        except InvalidTransitionError as exc:
            LOGGER.debug("Ignoring event: %s", exc)
            return None


__all__ = [
    "AT_REST_PHASES",
    "CancelRequested",
    "ConnectingStarted",
    "Failed",
    "FinalSegmentsUpdated",
    "HandoffCompleted",
    "INITIAL_STATE",
    "InvalidTransitionError",
    "LiveSegmentsUpdated",
    "RecordingControls",
    "RecordingEvent",
    "RecordingPhase",
    "RecordingState",
    "RecordingStateMachine",
    "StartRequested",
    "StopRequested",
    "StreamEstablished",
    "controls_for",
    "status_for",
    "transition",
]
