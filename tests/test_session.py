"""Tests for the streaming session controller."""

from __future__ import annotations

from typing import Optional

import pytest

from tutorscribe.core.audio.mixer import MixedStream
from tutorscribe.core.pipeline.session import StreamingSessionController
from tutorscribe.services.transcription.base import (
    StreamCallbacks,
    StreamingError,
    StreamingTranscriptionClient,
)
from tutorscribe.transcript.segments import Segment


class ManualClient(StreamingTranscriptionClient):
    """Client whose callbacks are driven by the test."""

    def __init__(self, fail_with: Optional[Exception] = None, finished: bool = True) -> None:
        self.fail_with = fail_with
        self.finished = finished
        self.callbacks: Optional[StreamCallbacks] = None
        self.started_with = None
        self.stop_calls = 0
        self.cancel_calls = 0
        self.waits = []
        self.on_start_hook = None

    def start(self, api_key, websocket_url, audio, callbacks) -> None:
        self.started_with = (api_key, websocket_url, audio)
        self.callbacks = callbacks
        if self.fail_with is not None:
            raise self.fail_with
        if self.on_start_hook is not None:
            self.on_start_hook()
        callbacks.on_started()

    def stop(self) -> None:
        self.stop_calls += 1

    def cancel(self) -> None:
        self.cancel_calls += 1

    def wait_finished(self, timeout=None) -> bool:
        self.waits.append(timeout)
        return self.finished


class Recorder:
    def __init__(self) -> None:
        self.updates = []
        self.started = []
        self.failures = []
        self.finished = 0

    def controller(self, clients, clock=lambda: 50.0) -> StreamingSessionController:
        pending = list(clients)
        return StreamingSessionController(
            lambda: pending.pop(0),
            on_update=self.updates.append,
            on_started=self.started.append,
            on_failed=self.failures.append,
            on_finished=self._finished,
            clock=clock,
        )

    def _finished(self) -> None:
        self.finished += 1


def _token(text, final=True, speaker=1):
    return {"text": text, "is_final": final, "speaker": speaker}


@pytest.fixture
def stream() -> MixedStream:
    return MixedStream(16_000)


def test_start_reports_started_and_forwards_updates(stream) -> None:
    recorder = Recorder()
    client = ManualClient()
    controller = recorder.controller([client])

    controller.start("key", "wss://example", stream)
    client.callbacks.on_partial_result([_token("Hello"), _token(" there", final=False)])

    assert client.started_with == ("key", "wss://example", stream)
    assert recorder.started == [50.0]
    assert controller.started_at == 50.0
    assert controller.is_active
    assert recorder.updates[-1].final == [Segment("Speaker 1", "Hello")]
    assert recorder.updates[-1].live == [Segment("Speaker 1", "Hello there")]


def test_callbacks_from_previous_stream_are_ignored(stream) -> None:
    recorder = Recorder()
    first, second = ManualClient(), ManualClient()
    controller = recorder.controller([first, second])

    controller.start("key", None, stream)
    old_callbacks = first.callbacks
    controller.start("key", None, stream)

    old_callbacks.on_partial_result([_token("stale")])
    old_callbacks.on_error("500", "late failure")
    second.callbacks.on_partial_result([_token("fresh")])

    assert first.cancel_calls == 1
    assert recorder.failures == []
    assert controller.transcript_text() == "Speaker 1: fresh"


def test_callbacks_after_cancel_are_ignored(stream) -> None:
    recorder = Recorder()
    client = ManualClient()
    controller = recorder.controller([client])
    controller.start("key", None, stream)

    controller.cancel()
    client.callbacks.on_partial_result([_token("late")])
    client.callbacks.on_finished()

    assert client.cancel_calls == 1
    assert not controller.is_active
    assert controller.started_at is None
    assert recorder.updates == []
    assert recorder.finished == 0


def test_start_failure_is_wrapped_and_cleans_up(stream) -> None:
    recorder = Recorder()
    client = ManualClient(fail_with=OSError("handshake refused"))
    controller = recorder.controller([client])

    with pytest.raises(StreamingError) as excinfo:
        controller.start("key", None, stream)

    assert "handshake refused" in str(excinfo.value)
    assert client.cancel_calls == 1
    assert not controller.is_active


def test_cancel_during_start_rejects_with_cancelled_message(stream) -> None:
    recorder = Recorder()
    client = ManualClient()
    controller = recorder.controller([client])
    client.on_start_hook = controller.cancel

    with pytest.raises(StreamingError) as excinfo:
        controller.start("key", None, stream)

    assert "cancelled" in str(excinfo.value)
    assert recorder.started == []
    assert client.cancel_calls >= 1


def test_remote_error_tears_down_and_reports(stream) -> None:
    recorder = Recorder()
    client = ManualClient()
    controller = recorder.controller([client])
    controller.start("key", None, stream)

    client.callbacks.on_error("503", "")
    client.callbacks.on_error("500", "second error")

    assert recorder.failures == ["503"]
    assert client.cancel_calls == 1
    assert not controller.is_active


def test_finished_emits_final_snapshot_and_stops(stream) -> None:
    recorder = Recorder()
    client = ManualClient()
    controller = recorder.controller([client])
    controller.start("key", None, stream)
    client.callbacks.on_partial_result([_token("Done."), _token(" maybe", final=False)])

    client.callbacks.on_finished()

    last = recorder.updates[-1]
    assert last.live == last.final == [Segment("Speaker 1", "Done.")]
    assert recorder.finished == 1
    assert client.stop_calls == 1
    assert not controller.is_active
    assert controller.transcript_text() == "Speaker 1: Done."


def test_stop_waits_for_service_and_reports_timeout(stream) -> None:
    recorder = Recorder()
    client = ManualClient(finished=False)
    controller = recorder.controller([client])
    controller.start("key", None, stream)

    assert controller.stop(reset_start=True, wait=True, timeout=0.5) is False
    assert client.waits == [0.5]
    assert client.stop_calls == 1
    assert client.cancel_calls == 1
    assert controller.started_at is None


def test_stop_without_stream_is_noop() -> None:
    controller = Recorder().controller([])

    assert controller.stop(wait=True) is True
    controller.cancel()


def test_new_stream_resets_transcript(stream) -> None:
    recorder = Recorder()
    first, second = ManualClient(), ManualClient()
    controller = recorder.controller([first, second])
    controller.start("key", None, stream)
    first.callbacks.on_partial_result([_token("one", speaker=4)])

    controller.start("key", None, stream)

    assert controller.transcript_text() == ""
    assert controller.speaker_count() == 0
