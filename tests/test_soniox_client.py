"""Tests for the Soniox WebSocket client using an in-memory connection."""

from __future__ import annotations

import json
import queue
import threading

import numpy as np
import pytest
from websockets.exceptions import ConnectionClosedOK

from tutorscribe.core.audio.mixer import MixedStream
from tutorscribe.services.transcription.base import StreamCallbacks, StreamingError
from tutorscribe.services.transcription.soniox import WEBSOCKET_ERROR, SonioxStreamingClient

_CLOSED = object()


class FakeWebSocket:
    def __init__(self) -> None:
        self.sent: list = []
        self.incoming: "queue.Queue[object]" = queue.Queue()
        self.closed = False
        self.end_of_audio = threading.Event()

    def send(self, message) -> None:
        self.sent.append(message)
        if message == "":
            self.end_of_audio.set()

    def recv(self):
        item = self.incoming.get(timeout=5)
        if item is _CLOSED:
            raise ConnectionClosedOK(None, None)
        return item

    def deliver(self, payload: dict) -> None:
        self.incoming.put(json.dumps(payload))

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.incoming.put(_CLOSED)


class Events:
    def __init__(self) -> None:
        self.started = threading.Event()
        self.finished = threading.Event()
        self.errored = threading.Event()
        self.batches: list = []
        self.errors: list = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_started=self.started.set,
            on_partial_result=self.batches.append,
            on_finished=self.finished.set,
            on_error=self._error,
        )

    def _error(self, status: str, message: str) -> None:
        self.errors.append((status, message))
        self.errored.set()


@pytest.fixture
def ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def connections(ws):
    calls = []

    def _connect(url, **kwargs):
        calls.append((url, kwargs))
        return ws

    return calls, _connect


def _client(connect) -> SonioxStreamingClient:
    return SonioxStreamingClient(
        model="stt-rt-preview",
        language_hints=["en", "ar"],
        connect_timeout=3.0,
        connect=connect,
    )


def test_start_sends_config_first(ws, connections) -> None:
    calls, connect = connections
    client = _client(connect)
    events = Events()
    audio = MixedStream(16_000)

    client.start("temp-key", "wss://example/ws", audio, events.callbacks())
    try:
        assert events.started.is_set()
        assert calls == [("wss://example/ws", {"open_timeout": 3.0, "max_size": None})]
        config = json.loads(ws.sent[0])
        assert config == {
            "api_key": "temp-key",
            "model": "stt-rt-preview",
            "audio_format": "pcm_s16le",
            "sample_rate": 16_000,
            "num_channels": 1,
            "enable_speaker_diarization": True,
            "enable_language_identification": True,
            "enable_endpoint_detection": False,
            "language_hints": ["en", "ar"],
        }
    finally:
        client.cancel()


def test_stream_audio_tokens_and_finish(ws, connections) -> None:
    _calls, connect = connections
    client = _client(connect)
    events = Events()
    audio = MixedStream(16_000)
    client.start("temp-key", None, audio, events.callbacks())

    audio.push(np.full(4, 0.5, dtype=np.float32))
    client.stop()
    assert ws.end_of_audio.wait(2.0)

    tokens = [{"text": "Hi", "is_final": True, "speaker": "1"}]
    ws.deliver({"tokens": tokens})
    ws.deliver({"tokens": [], "finished": True})

    assert client.wait_finished(2.0)
    assert events.finished.wait(2.0)
    client.cancel()

    binary = [frame for frame in ws.sent[1:] if isinstance(frame, bytes)]
    assert binary == [np.full(4, 0.5 * 32767.0, dtype=np.float32).astype("<i2").tobytes()]
    assert ws.sent[-1] == ""
    assert events.batches == [tokens]
    assert events.errors == []


def test_connect_failure_raises_streaming_error() -> None:
    def _refuse(url, **kwargs):
        raise OSError("connection refused")

    client = _client(_refuse)

    with pytest.raises(StreamingError) as excinfo:
        client.start("key", None, MixedStream(16_000), StreamCallbacks())

    assert "Unable to connect to Soniox" in str(excinfo.value)
    assert "connection refused" in str(excinfo.value)


def test_error_response_reported_once(ws, connections) -> None:
    _calls, connect = connections
    client = _client(connect)
    events = Events()
    client.start("key", None, MixedStream(16_000), events.callbacks())

    ws.deliver({"error_code": 401, "error_message": "Invalid API key"})

    assert events.errored.wait(2.0)
    assert client.wait_finished(0)
    client.cancel()
    assert events.errors == [("401", "Invalid API key")]


def test_early_close_is_an_error(ws, connections) -> None:
    _calls, connect = connections
    client = _client(connect)
    events = Events()
    client.start("key", None, MixedStream(16_000), events.callbacks())

    ws.incoming.put(_CLOSED)

    assert events.errored.wait(2.0)
    client.cancel()
    assert events.errors == [(WEBSOCKET_ERROR, "Connection closed before transcription finished")]


def test_cancel_closes_without_reporting(ws, connections) -> None:
    _calls, connect = connections
    client = _client(connect)
    events = Events()
    client.start("key", None, MixedStream(16_000), events.callbacks())

    client.cancel()

    assert ws.closed
    assert events.errors == []
    assert "" not in ws.sent


def test_handle_message_ignores_malformed_payloads() -> None:
    client = _client(lambda *_args, **_kwargs: None)

    assert client.handle_message("not json") is False
    assert client.handle_message("[1, 2]") is False
    assert client.handle_message(json.dumps({"tokens": []})) is False
