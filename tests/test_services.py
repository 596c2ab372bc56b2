"""Tests for service selection and the scripted streaming client."""

from __future__ import annotations

import threading

import pytest

from tutorscribe.config import Settings
from tutorscribe.core.audio.mixer import MixedStream
from tutorscribe.services.credentials import SonioxCredentialIssuer, StaticCredentialIssuer
from tutorscribe.services.factory import (
    ServiceConfigurationError,
    resolve_client_factory,
    resolve_credentials,
    resolve_sink,
)
from tutorscribe.services.sinks import HttpResultSink, SessionStoreSink
from tutorscribe.services.transcription import (
    ScriptedStreamingClient,
    StreamCallbacks,
    StreamingError,
)
from tutorscribe.services.transcription.soniox import SonioxStreamingClient


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        (None, SonioxStreamingClient),
        ("", SonioxStreamingClient),
        (" Soniox ", SonioxStreamingClient),
        ("dummy", ScriptedStreamingClient),
    ],
)
def test_resolve_client_factory(name, expected) -> None:
    assert resolve_client_factory(name) is expected


def test_resolve_client_factory_rejects_unknown() -> None:
    with pytest.raises(ServiceConfigurationError):
        resolve_client_factory("whisper")


def test_resolve_credentials() -> None:
    settings = Settings(soniox_api_key="master")

    assert isinstance(resolve_credentials("dummy", settings), StaticCredentialIssuer)
    assert isinstance(resolve_credentials("soniox", settings), SonioxCredentialIssuer)


def test_resolve_sink_prefers_endpoint(tmp_path) -> None:
    http = resolve_sink(Settings(result_endpoint="https://app/sessions"))
    local = resolve_sink(Settings(database_path=tmp_path / "db.sqlite"))

    assert isinstance(http, HttpResultSink)
    assert http.url == "https://app/sessions"
    assert isinstance(local, SessionStoreSink)
    assert (tmp_path / "db.sqlite").exists()


def test_scripted_client_flushes_on_stop() -> None:
    batches = [
        [{"text": "one", "is_final": True, "speaker": 1}],
        [{"text": " two", "is_final": True, "speaker": 1}],
    ]
    received = []
    finished = threading.Event()
    client = ScriptedStreamingClient(batches=batches, interval=60.0)
    audio = MixedStream(16_000)

    client.start(
        "key",
        None,
        audio,
        StreamCallbacks(on_partial_result=received.append, on_finished=finished.set),
    )
    client.stop()

    assert client.wait_finished(2.0)
    assert finished.wait(2.0)
    client.cancel()
    assert received == batches
    assert client.config == {"api_key": "key", "websocket_url": None}


def test_scripted_client_can_fail_to_start() -> None:
    client = ScriptedStreamingClient(fail_with="Handshake refused")

    with pytest.raises(StreamingError):
        client.start("key", None, MixedStream(16_000), StreamCallbacks())

    assert client.started is False


def test_scripted_client_cancel_skips_finish() -> None:
    finished = threading.Event()
    client = ScriptedStreamingClient(batches=[], interval=0.01)
    client.start("key", None, MixedStream(16_000), StreamCallbacks(on_finished=finished.set))

    client.cancel()

    assert not finished.wait(0.1)
    assert client.cancel_calls == 1
