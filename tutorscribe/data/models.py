"""Data models used by tutorscribe."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RecordingResult(BaseModel):
    """What a finished recording hands to persistence."""

    transcript: str
    duration_ms: int = 0
    speaker_count: int = 0
    started_at: Optional[float] = None


class SavedSession(BaseModel):
    id: str
    created_at: float
    transcript: str
    duration_ms: int
    speaker_count: int
    started_at: Optional[float] = None

    @property
    def word_count(self) -> int:
        return len(self.transcript.split())


class RecordingDraft(BaseModel):
    """Autosaved snapshot of a recording in progress."""

    transcript: str = ""
    started_at: Optional[float] = None
    duration_ms: int = 0
    speaker_count: int = 0
    status: str = "live"
    last_saved: float = 0.0

    def to_result(self) -> RecordingResult:
        return RecordingResult(
            transcript=self.transcript,
            duration_ms=self.duration_ms,
            speaker_count=self.speaker_count,
            started_at=self.started_at,
        )


class UploadQueueItem(BaseModel):
    """A result that could not be handed off and is waiting for a retry."""

    id: str
    result: RecordingResult
    created_at: float
    attempts: int = Field(default=0, ge=0)


__all__ = ["RecordingDraft", "RecordingResult", "SavedSession", "UploadQueueItem"]
