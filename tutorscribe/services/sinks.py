"""Destinations a finished recording is handed to."""

from __future__ import annotations

import abc
from typing import Optional

import requests

from ..config import get_settings
from ..data.models import RecordingResult
from ..data.storage import SessionStore
from ..logging import get_logger

LOGGER = get_logger(__name__)


class HandoffError(RuntimeError):
    """Raised when a finished recording cannot be persisted."""


class ResultSink(abc.ABC):
    @abc.abstractmethod
    def save(self, result: RecordingResult) -> str:
        """Persist ``result`` and return the id it was stored under."""

        raise NotImplementedError


class SessionStoreSink(ResultSink):
    def __init__(self, store: Optional[SessionStore] = None) -> None:
        self.store = store or SessionStore(get_settings().database_path)
        self.store.initialize()

    def save(self, result: RecordingResult) -> str:
        try:
            return self.store.save_result(result)
        except Exception as exc:
            raise HandoffError(f"Failed to save session: {exc}") from exc


class HttpResultSink(ResultSink):
    """POST the result as JSON; the response should carry an ``id``."""

    def __init__(self, url: str, timeout: float = 30.0) -> None:
        self.url = url
        self.timeout = timeout

    def save(self, result: RecordingResult) -> str:
        try:
            response = requests.post(self.url, json=result.model_dump(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise HandoffError(f"Failed to reach {self.url}: {exc}") from exc
        if response.status_code >= 400:
            raise HandoffError(f"Save failed ({response.status_code})")
        try:
            data = response.json()
        except ValueError:
            data = {}
        session_id = data.get("id") if isinstance(data, dict) else None
        LOGGER.info("Handed recording to %s", self.url)
        return str(session_id) if session_id is not None else ""


__all__ = ["HandoffError", "HttpResultSink", "ResultSink", "SessionStoreSink"]
