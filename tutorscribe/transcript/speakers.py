"""Stable speaker labels derived from volatile speaker tags."""

from __future__ import annotations

from typing import Dict, Optional

from .tokens import DEFAULT_SPEAKER_TAG


class SpeakerResolver:
    """Map raw speaker tags to ``"Speaker N"`` labels in first-seen order.

    A tag keeps its label for the lifetime of the resolver. Create a new
    resolver (or call :meth:`clear`) for every recording session so labels
    never leak from one session to the next.
    """

    def __init__(self) -> None:
        self._labels: Dict[str, str] = {}

    @staticmethod
    def _key(raw_tag: Optional[int | str]) -> str:
        if raw_tag is None:
            raw_tag = DEFAULT_SPEAKER_TAG
        return str(raw_tag)

    def label_for(self, raw_tag: Optional[int | str]) -> str:
        key = self._key(raw_tag)
        label = self._labels.get(key)
        if label is None:
            label = f"Speaker {len(self._labels) + 1}"
            self._labels[key] = label
        return label

    def speaker_count(self) -> int:
        return len(self._labels)

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self._labels)

    def clear(self) -> None:
        self._labels.clear()


__all__ = ["SpeakerResolver"]
