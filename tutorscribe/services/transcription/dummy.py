"""Scripted streaming client for offline demos and tests."""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence

from ...core.audio.mixer import MixedStream
from ...logging import get_logger
from .base import StreamCallbacks, StreamingError, StreamingTranscriptionClient

LOGGER = get_logger(__name__)

TokenBatch = List[Dict[str, Any]]


def _batch(*tokens: tuple) -> TokenBatch:
    return [{"text": text, "is_final": final, "speaker": speaker} for text, final, speaker in tokens]


DEMO_SCRIPT: List[TokenBatch] = [
    _batch(("Good", False, 1)),
    _batch(("Good", True, 1), (" morning,", True, 1), (" let's", False, 1)),
    _batch((" let's", True, 1), (" start with", True, 1), (" fractions.", True, 1), ("<end>", True, 1)),
    _batch(("Okay,", False, 2), (" I", False, 2)),
    _batch(("Okay,", True, 2), (" I practised", True, 2), (" them yesterday.", True, 2)),
]


class ScriptedStreamingClient(StreamingTranscriptionClient):
    """Replay pre-recorded token batches instead of talking to a service.

    Audio from the mixed stream is read and discarded so the mixer queue does
    not fill up. Batches are emitted every ``interval`` seconds; stopping
    flushes whatever is left and then reports the stream as finished.
    """

    def __init__(
        self,
        batches: Optional[Sequence[TokenBatch]] = None,
        interval: float = 0.5,
        fail_with: Optional[str] = None,
    ) -> None:
        self.batches = [list(batch) for batch in (batches if batches is not None else DEMO_SCRIPT)]
        self.interval = interval
        self.fail_with = fail_with
        self.started = False
        self.stop_calls = 0
        self.cancel_calls = 0
        self.config: Optional[Dict[str, Any]] = None
        self._callbacks = StreamCallbacks()
        self._stopping = threading.Event()
        self._closed = threading.Event()
        self._finished = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(
        self,
        api_key: str,
        websocket_url: Optional[str],
        audio: MixedStream,
        callbacks: StreamCallbacks,
    ) -> None:
        if self.fail_with is not None:
            raise StreamingError(self.fail_with)
        self.config = {"api_key": api_key, "websocket_url": websocket_url}
        self._callbacks = callbacks
        self._stopping = threading.Event()
        self._closed = threading.Event()
        self._finished = threading.Event()
        self.started = True
        callbacks.on_started()
        self._thread = threading.Thread(
            target=self._replay,
            args=(audio,),
            name="tutorscribe-scripted-stream",
            daemon=True,
        )
        self._thread.start()

    def _replay(self, audio: MixedStream) -> None:
        pending = list(self.batches)
        while not self._closed.is_set():
            while audio.read(timeout=0) is not None:
                pass
            if self._stopping.is_set() and not pending:
                break
            if pending and (self._stopping.is_set() or not self._stopping.wait(self.interval)):
                if self._closed.is_set():
                    break
                self.emit(pending.pop(0))
            elif not pending:
                self._stopping.wait(0.05)
        if not self._closed.is_set():
            self._finished.set()
            self._callbacks.on_finished()

    def emit(self, tokens: TokenBatch) -> None:
        self._callbacks.on_partial_result(list(tokens))

    def fail(self, status: str, message: str) -> None:
        self._callbacks.on_error(status, message)

    def stop(self) -> None:
        self.stop_calls += 1
        self._stopping.set()

    def cancel(self) -> None:
        self.cancel_calls += 1
        self._closed.set()
        self._stopping.set()
        self._finished.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def wait_finished(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)


__all__ = ["DEMO_SCRIPT", "ScriptedStreamingClient", "TokenBatch"]
