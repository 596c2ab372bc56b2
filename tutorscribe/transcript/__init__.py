"""Transcript reconciliation: token filtering, speaker labels and segments."""

from .segments import BatchUpdate, Segment, SegmentAccumulator, format_transcript
from .speakers import SpeakerResolver
from .tokens import Token, is_displayable, parse_tokens

__all__ = [
    "BatchUpdate",
    "Segment",
    "SegmentAccumulator",
    "SpeakerResolver",
    "Token",
    "format_transcript",
    "is_displayable",
    "parse_tokens",
]
