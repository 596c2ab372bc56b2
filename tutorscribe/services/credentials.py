"""Issue short-lived Soniox credentials for a streaming session."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from ..config import DEFAULT_SONIOX_WEBSOCKET_URL, get_settings
from ..logging import get_logger

LOGGER = get_logger(__name__)

TEMPORARY_KEY_URL = "https://api.soniox.com/v1/auth/temporary-api-key"
TEMPORARY_KEY_TTL_SECONDS = 3600
MISSING_KEY_MESSAGE = "Server did not return a Soniox API key."


class CredentialError(RuntimeError):
    """Raised when streaming credentials cannot be obtained."""


@dataclass(frozen=True)
class SessionCredentials:
    api_key: str
    websocket_url: str = DEFAULT_SONIOX_WEBSOCKET_URL
    expires_at: Optional[str] = None


class CredentialIssuer(abc.ABC):
    @abc.abstractmethod
    def issue(self) -> SessionCredentials:
        raise NotImplementedError


class StaticCredentialIssuer(CredentialIssuer):
    """Hand out a fixed key; used for the scripted client and tests."""

    def __init__(self, api_key: str = "offline", websocket_url: Optional[str] = None) -> None:
        self.api_key = api_key
        self.websocket_url = websocket_url or DEFAULT_SONIOX_WEBSOCKET_URL

    def issue(self) -> SessionCredentials:
        return SessionCredentials(api_key=self.api_key, websocket_url=self.websocket_url)


class SonioxCredentialIssuer(CredentialIssuer):
    """Fetch a temporary key from a token endpoint or from Soniox directly.

    A configured ``token_url`` wins: it is expected to answer a POST with
    ``{"apiKey", "websocketUrl", "expiresAt"}``. Otherwise the master key is
    exchanged for a temporary one limited to WebSocket transcription.
    """

    def __init__(
        self,
        master_key: Optional[str] = None,
        token_url: Optional[str] = None,
        websocket_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.master_key = master_key if master_key is not None else settings.soniox_api_key
        self.token_url = token_url if token_url is not None else settings.soniox_token_url
        self.websocket_url = websocket_url or settings.soniox_websocket_url
        self.timeout = timeout or settings.connect_timeout_seconds

    def issue(self) -> SessionCredentials:
        if self.token_url:
            return self._from_token_endpoint(self.token_url)
        if not self.master_key:
            raise CredentialError("Missing Soniox API key. Set TUTORSCRIBE_SONIOX_API_KEY or a token URL.")
        return self._temporary_key(self.master_key)

    def _post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = requests.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise CredentialError(f"Failed to reach {url}: {exc}") from exc

        if response.status_code != 200:
            detail = (response.text or "").strip()
            raise CredentialError(f"Soniox token error ({response.status_code}): {detail}")
        try:
            data = response.json()
        except ValueError as exc:
            raise CredentialError("Token response was not valid JSON") from exc
        if not isinstance(data, dict):
            raise CredentialError("Token response was not a JSON object")
        return data

    def _from_token_endpoint(self, url: str) -> SessionCredentials:
        data = self._post(url)
        api_key = data.get("apiKey")
        if not api_key:
            raise CredentialError(MISSING_KEY_MESSAGE)
        LOGGER.debug("Issued Soniox credentials from %s", url)
        return SessionCredentials(
            api_key=api_key,
            websocket_url=data.get("websocketUrl") or self.websocket_url,
            expires_at=data.get("expiresAt"),
        )

    def _temporary_key(self, master_key: str) -> SessionCredentials:
        data = self._post(
            TEMPORARY_KEY_URL,
            headers={
                "Authorization": f"Bearer {master_key}",
                "Content-Type": "application/json",
            },
            json={
                "usage_type": "transcribe_websocket",
                "expires_in_seconds": TEMPORARY_KEY_TTL_SECONDS,
            },
        )
        api_key = data.get("api_key")
        if not api_key:
            raise CredentialError(MISSING_KEY_MESSAGE)
        LOGGER.debug("Issued temporary Soniox key expiring at %s", data.get("expires_at"))
        return SessionCredentials(
            api_key=api_key,
            websocket_url=self.websocket_url,
            expires_at=data.get("expires_at"),
        )


__all__ = [
    "CredentialError",
    "CredentialIssuer",
    "MISSING_KEY_MESSAGE",
    "SessionCredentials",
    "SonioxCredentialIssuer",
    "StaticCredentialIssuer",
    "TEMPORARY_KEY_URL",
]
