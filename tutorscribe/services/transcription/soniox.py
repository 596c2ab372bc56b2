"""Soniox real-time speech-to-text client over a WebSocket."""

from __future__ import annotations

import contextlib
import json
import threading
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.sync.client import connect as ws_connect

from ...config import DEFAULT_SONIOX_WEBSOCKET_URL, get_settings
from ...core.audio.mixer import MixedStream
from ...logging import get_logger
from ...utils.audio import to_pcm16
from .base import StreamCallbacks, StreamingError, StreamingTranscriptionClient

LOGGER = get_logger(__name__)

WEBSOCKET_ERROR = "websocket_error"


class SonioxStreamingClient(StreamingTranscriptionClient):
    """Stream PCM16 audio to Soniox and relay its token responses.

    The first frame is the JSON session config, followed by binary audio
    frames and an empty text frame marking the end of audio. One thread sends
    audio, another receives responses; callbacks run on the receiving thread.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        language_hints: Optional[List[str]] = None,
        connect_timeout: Optional[float] = None,
        connect: Optional[Callable[..., Any]] = None,
    ) -> None:
        settings = get_settings()
        self.model = model or settings.soniox_model
        self.language_hints = list(language_hints if language_hints is not None else settings.language_hints)
        self.connect_timeout = connect_timeout or settings.connect_timeout_seconds
        self._connect = connect or ws_connect
        self._lock = threading.Lock()
        self._ws = None
        self._callbacks = StreamCallbacks()
        self._sender: Optional[threading.Thread] = None
        self._receiver: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._closed = threading.Event()
        self._finished = threading.Event()
        self._error_reported = False

    def build_config(self, api_key: str, audio: MixedStream) -> Dict[str, Any]:
        return {
            "api_key": api_key,
            "model": self.model,
            "audio_format": "pcm_s16le",
            "sample_rate": int(audio.sample_rate),
            "num_channels": int(audio.channels),
            "enable_speaker_diarization": True,
            "enable_language_identification": True,
            "enable_endpoint_detection": False,
            "language_hints": list(self.language_hints),
        }

    def start(
        self,
        api_key: str,
        websocket_url: Optional[str],
        audio: MixedStream,
        callbacks: StreamCallbacks,
    ) -> None:
        if self._ws is not None:
            self.cancel()

        url = websocket_url or DEFAULT_SONIOX_WEBSOCKET_URL
        self._stopping = threading.Event()
        self._closed = threading.Event()
        self._finished = threading.Event()
        self._error_reported = False
        self._callbacks = callbacks

        LOGGER.info("Connecting to Soniox at %s", url)
        try:
            ws = self._connect(url, open_timeout=self.connect_timeout, max_size=None)
        except Exception as exc:
            raise StreamingError(f"Unable to connect to Soniox: {exc}") from exc

        try:
            ws.send(json.dumps(self.build_config(api_key, audio)))
        except Exception as exc:
            with contextlib.suppress(Exception):
                ws.close()
            raise StreamingError(f"Unable to configure Soniox stream: {exc}") from exc

        with self._lock:
            self._ws = ws
            self._sender = threading.Thread(
                target=self._send_audio,
                args=(ws, audio, self._stopping, self._closed),
                name="tutorscribe-soniox-send",
                daemon=True,
            )
            self._receiver = threading.Thread(
                target=self._receive,
                args=(ws, self._closed),
                name="tutorscribe-soniox-recv",
                daemon=True,
            )
            self._sender.start()
            self._receiver.start()
        callbacks.on_started()

    def _send_audio(
        self,
        ws,
        audio: MixedStream,
        stopping: threading.Event,
        closed: threading.Event,
    ) -> None:
        try:
            while not closed.is_set():
                draining = stopping.is_set() or audio.ended
                chunk = audio.read(timeout=0 if draining else 0.1)
                if chunk is None:
                    if draining:
                        break
                    continue
                ws.send(to_pcm16(chunk))
            if not closed.is_set():
                ws.send("")
                LOGGER.debug("Sent end of audio to Soniox")
        except ConnectionClosed:
            LOGGER.debug("Soniox connection closed while sending audio")
        except Exception as exc:
            if not closed.is_set():
                self._report_error(WEBSOCKET_ERROR, str(exc))

    def _receive(self, ws, closed: threading.Event) -> None:
        try:
            while not closed.is_set():
                try:
                    raw = ws.recv()
                except ConnectionClosedOK:
                    if not closed.is_set() and not self._finished.is_set():
                        self._report_error(WEBSOCKET_ERROR, "Connection closed before transcription finished")
                    return
                except ConnectionClosed as exc:
                    if not closed.is_set():
                        self._report_error(WEBSOCKET_ERROR, str(exc) or "Connection lost")
                    return
                if self.handle_message(raw):
                    return
        finally:
            with contextlib.suppress(Exception):
                ws.close()

    def handle_message(self, raw: Any) -> bool:
        """Dispatch one service response; return ``True`` once the stream is over."""

        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring malformed Soniox message: %r", raw)
            return False
        if not isinstance(message, dict):
            return False

        if message.get("error_code") is not None:
            status = str(message.get("error_code"))
            self._report_error(status, message.get("error_message") or status)
            return True

        tokens = message.get("tokens")
        if tokens:
            self._callbacks.on_partial_result(list(tokens))

        if message.get("finished"):
            self._finished.set()
            self._callbacks.on_finished()
            return True
        return False

    def _report_error(self, status: str, message: str) -> None:
        with self._lock:
            if self._error_reported:
                return
            self._error_reported = True
        LOGGER.error("Soniox stream error (%s): %s", status, message)
        self._finished.set()
        self._callbacks.on_error(status, message)

    def stop(self) -> None:
        self._stopping.set()

    def cancel(self) -> None:
        with self._lock:
            ws, self._ws = self._ws, None
            threads = [thread for thread in (self._sender, self._receiver) if thread is not None]
            self._sender = None
            self._receiver = None
        self._closed.set()
        self._stopping.set()
        self._finished.set()
        if ws is not None:
            with contextlib.suppress(Exception):
                ws.close()
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join(timeout=2.0)

    def wait_finished(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)


__all__ = ["SonioxStreamingClient", "WEBSOCKET_ERROR"]
