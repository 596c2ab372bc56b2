"""Streaming session controller: owns one transcription connection at a time."""

from __future__ import annotations

import contextlib
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from ...logging import get_logger
from ...services.transcription.base import (
    StreamCallbacks,
    StreamingError,
    StreamingTranscriptionClient,
)
from ...transcript.segments import BatchUpdate, Segment, SegmentAccumulator, copy_segments
from ...transcript.tokens import parse_tokens
from ..audio.mixer import MixedStream

LOGGER = get_logger(__name__)

ClientFactory = Callable[[], StreamingTranscriptionClient]


class StreamingSessionController:
    """Connect a mixed audio stream to a transcription client.

    Each :meth:`start` bumps a generation counter and every callback handed
    to the client is bound to the generation that created it. Callbacks from
    an older connection, or arriving after :meth:`stop` or :meth:`cancel`,
    are dropped, so a late partial result can never leak into a new session.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        on_update: Optional[Callable[[BatchUpdate], None]] = None,
        on_started: Optional[Callable[[float], None]] = None,
        on_failed: Optional[Callable[[str], None]] = None,
        on_finished: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_factory = client_factory
        self.on_update = on_update
        self.on_started = on_started
        self.on_failed = on_failed
        self.on_finished = on_finished
        self._clock = clock
        self._lock = threading.RLock()
        self._generation = 0
        self._client: Optional[StreamingTranscriptionClient] = None
        self._started_at: Optional[float] = None
        self.accumulator = SegmentAccumulator()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_active(self) -> bool:
        return self._client is not None

    @property
    def started_at(self) -> Optional[float]:
        return self._started_at

    def start(self, api_key: str, websocket_url: Optional[str], mixed_stream: MixedStream) -> None:
        with self._lock:
            previous = self._release()
            self._generation += 1
            generation = self._generation
            self.accumulator.reset()
            self._started_at = None
            client = self._client_factory()
            self._client = client
        self._cancel_client(previous)

        try:
            client.start(api_key, websocket_url, mixed_stream, self._callbacks_for(generation))
        except Exception as exc:
            with self._lock:
                if self._generation == generation:
                    self._client = None
                    self._generation += 1
            with contextlib.suppress(Exception):
                client.cancel()
            if isinstance(exc, StreamingError):
                raise
            raise StreamingError(str(exc) or "Failed to start transcription stream") from exc

        with self._lock:
            superseded = self._generation != generation
        if superseded:
            self._cancel_client(client)
            raise StreamingError("Transcription stream start was cancelled")
        LOGGER.info("Transcription stream %s started", generation)

    def _callbacks_for(self, generation: int) -> StreamCallbacks:
        return StreamCallbacks(
            on_started=lambda: self._handle_started(generation),
            on_partial_result=lambda tokens: self._handle_partial(generation, tokens),
            on_finished=lambda: self._handle_finished(generation),
            on_error=lambda status, message: self._handle_error(generation, status, message),
        )

    def _is_current(self, generation: int, kind: str) -> bool:
        if generation == self._generation and self._client is not None:
            return True
        LOGGER.debug("Ignoring %s from stale stream %s (current %s)", kind, generation, self._generation)
        return False

    def _handle_started(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation, "start"):
                return
            self._started_at = self._clock()
            started_at = self._started_at
        self._emit(self.on_started, started_at)

    def _handle_partial(self, generation: int, payloads: List[Dict[str, Any]]) -> None:
        with self._lock:
            if not self._is_current(generation, "partial result"):
                return
            update = self.accumulator.process_batch(parse_tokens(payloads))
        self._emit(self.on_update, update)

    def _handle_finished(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation, "finish"):
                return
            final = self.accumulator.final_segments()
            update = BatchUpdate(
                final=final,
                live=copy_segments(final),
                speaker_count=self.accumulator.speaker_count(),
            )
        LOGGER.info("Transcription stream %s finished", generation)
        self._emit(self.on_update, update)
        self.stop(reset_start=True)
        self._emit(self.on_finished)

    def _handle_error(self, generation: int, status: str, message: str) -> None:
        with self._lock:
            if not self._is_current(generation, "error"):
                return
            client = self._release()
        self._cancel_client(client)
        text = message or status or "Stream error"
        LOGGER.error("Transcription stream %s failed: %s", generation, text)
        self._emit(self.on_failed, text)

    def _emit(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:  # pragma: no cover - callbacks should not break the stream
            LOGGER.exception("Session callback raised an exception")

    def _release(self) -> Optional[StreamingTranscriptionClient]:
        client, self._client = self._client, None
        if client is not None:
            self._generation += 1
        return client

    @staticmethod
    def _cancel_client(client: Optional[StreamingTranscriptionClient]) -> None:
        if client is None:
            return
        try:
            client.cancel()
        except Exception as exc:
            LOGGER.warning("Error cancelling transcription client: %s", exc)

    def stop(self, reset_start: bool = False, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """Ask the service to finish; return ``False`` if a wait timed out.

        No-op when nothing is streaming. With ``wait`` the call blocks until
        the service reports it has flushed its final tokens.
        """

        with self._lock:
            client = self._client
        if client is None:
            if reset_start:
                self._started_at = None
            return True

        try:
            client.stop()
        except Exception as exc:
            LOGGER.warning("Error stopping transcription client: %s", exc)

        finished = True
        if wait:
            finished = client.wait_finished(timeout)
            if not finished:
                LOGGER.warning("Transcription service did not finish within %ss", timeout)

        with self._lock:
            if self._client is client:
                self._release()
            if reset_start:
                self._started_at = None
        with contextlib.suppress(Exception):
            client.cancel()
        return finished

    def cancel(self) -> None:
        with self._lock:
            client = self._release()
            self._started_at = None
        self._cancel_client(client)

    def transcript_text(self) -> str:
        return self.accumulator.transcript_text()

    def final_segments(self) -> List[Segment]:
        return self.accumulator.final_segments()

    def speaker_count(self) -> int:
        return self.accumulator.speaker_count()


__all__ = ["ClientFactory", "StreamingSessionController"]
