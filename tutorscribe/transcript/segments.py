"""Speaker-grouped transcript segments built from token batches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .speakers import SpeakerResolver
from .tokens import Token, is_displayable


@dataclass
class Segment:
    """A contiguous run of text attributed to one speaker label."""

    speaker: str
    text: str

    def copy(self) -> "Segment":
        return Segment(speaker=self.speaker, text=self.text)


@dataclass(frozen=True)
class BatchUpdate:
    """Snapshot of the transcript after one token batch."""

    final: List[Segment] = field(default_factory=list)
    live: List[Segment] = field(default_factory=list)
    speaker_count: int = 0


def copy_segments(segments: Iterable[Segment]) -> List[Segment]:
    return [segment.copy() for segment in segments]


def format_transcript(segments: Iterable[Segment]) -> str:
    """Render segments as ``"Speaker N: text"`` lines."""

    return "\n".join(f"{segment.speaker}: {segment.text}" for segment in segments)


def _fold(segments: List[Segment], speaker: str, text: str) -> None:
    if not segments or segments[-1].speaker != speaker:
        segments.append(Segment(speaker=speaker, text=text))
    else:
        segments[-1].text += text


class SegmentAccumulator:
    """Merge streamed tokens into durable final segments and a live view.

    Final tokens are folded into an append-only list that is never replayed.
    The live view is rebuilt on every batch from a copy of the final list plus
    the partial tokens of that batch only, since partials are revised by the
    service between batches.
    """

    def __init__(self, resolver: Optional[SpeakerResolver] = None) -> None:
        self.resolver = resolver or SpeakerResolver()
        self._final: List[Segment] = []

    def append_final(self, tokens: Iterable[Token]) -> None:
        for token in tokens:
            if not token.is_final or not is_displayable(token.text):
                continue
            label = self.resolver.label_for(token.speaker_tag)
            _fold(self._final, label, token.text)

    def build_live(self, non_final_tokens: Iterable[Token]) -> List[Segment]:
        live = copy_segments(self._final)
        for token in non_final_tokens:
            if token.is_final or not is_displayable(token.text):
                continue
            label = self.resolver.label_for(token.speaker_tag)
            _fold(live, label, token.text)
        return live

    def process_batch(self, tokens: Sequence[Token]) -> BatchUpdate:
        """Apply one batch: finals first, then the live view from its partials."""

        self.append_final(tokens)
        live = self.build_live([token for token in tokens if not token.is_final])
        return BatchUpdate(
            final=self.final_segments(),
            live=live,
            speaker_count=self.resolver.speaker_count(),
        )

    def final_segments(self) -> List[Segment]:
        return copy_segments(self._final)

    def speaker_count(self) -> int:
        return self.resolver.speaker_count()

    def transcript_text(self) -> str:
        return format_transcript(self._final)

    def reset(self) -> None:
        self._final = []
        self.resolver.clear()


__all__ = [
    "BatchUpdate",
    "Segment",
    "SegmentAccumulator",
    "copy_segments",
    "format_transcript",
]
