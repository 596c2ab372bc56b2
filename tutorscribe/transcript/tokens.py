"""Transcription tokens and the filter deciding which ones are displayable."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

# Keys used by streaming services for the speaker identifier, in lookup order.
SPEAKER_KEYS = (
    "speaker",
    "speaker_id",
    "speaker_tag",
    "speakerTag",
    "speaker_index",
    "speakerIndex",
    "spk",
    "spk_id",
    "channel",
)

DEFAULT_SPEAKER_TAG = 0

CONTROL_KEYWORDS = frozenset({"end", "endpoint"})
_BRACKET_TAG = re.compile(r"^<[^>]+>$")


@dataclass(frozen=True)
class Token:
    """A single fragment of speech emitted by the transcription stream."""

    text: str
    is_final: bool = False
    speaker_tag: Optional[int | str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Token":
        text = payload.get("text")
        is_final = payload.get("is_final", payload.get("isFinal", False))
        speaker_tag: Optional[int | str] = None
        for key in SPEAKER_KEYS:
            value = payload.get(key)
            if value is not None:
                speaker_tag = value
                break
        return cls(
            text="" if text is None else str(text),
            is_final=bool(is_final),
            speaker_tag=speaker_tag,
        )


def is_displayable(text: Optional[str]) -> bool:
    """Return ``True`` when ``text`` is speech rather than a control artifact."""

    if not text:
        return False
    value = str(text)
    stripped = value.strip()
    if not stripped:
        return False
    if stripped.lower() in CONTROL_KEYWORDS:
        return False
    if _BRACKET_TAG.match(value):
        return False
    return True


def parse_tokens(payloads: Optional[Iterable[Mapping[str, Any]]]) -> List[Token]:
    """Convert raw token dictionaries into :class:`Token` instances."""

    if not payloads:
        return []
    return [Token.from_payload(payload) for payload in payloads if isinstance(payload, Mapping)]


__all__ = [
    "CONTROL_KEYWORDS",
    "DEFAULT_SPEAKER_TAG",
    "SPEAKER_KEYS",
    "Token",
    "is_displayable",
    "parse_tokens",
]
