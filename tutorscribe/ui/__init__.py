"""User interface components for tutorscribe."""

from .console import RecordingConsoleUI, TranscriptRenderer

__all__ = ["RecordingConsoleUI", "TranscriptRenderer"]
