"""Tests for the local draft backup and upload retry queue."""

from __future__ import annotations

import threading

import pytest

from tutorscribe.data.backup import (
    DRAFT_FILENAME,
    Autosaver,
    LocalBackup,
    flush_upload_queue,
    recover_draft,
)
from tutorscribe.data.models import RecordingDraft, RecordingResult
from tutorscribe.services.sinks import HandoffError


class ListSink:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.saved = []

    def save(self, result: RecordingResult) -> str:
        if self.failures:
            self.failures -= 1
            raise HandoffError("Save failed (503)")
        self.saved.append(result)
        return f"session-{len(self.saved)}"


@pytest.fixture
def backup(tmp_path) -> LocalBackup:
    return LocalBackup(tmp_path / "backup")


def _draft(text: str = "Speaker 1: hello") -> RecordingDraft:
    return RecordingDraft(transcript=text, started_at=10.0, duration_ms=5_000, speaker_count=1, last_saved=15.0)


def test_draft_round_trip_and_clear(backup) -> None:
    assert backup.load_draft() is None

    backup.save_draft(_draft())

    assert backup.load_draft() == _draft()
    assert not list(backup.directory.glob("*.tmp"))

    backup.clear_draft()
    backup.clear_draft()

    assert backup.load_draft() is None


def test_corrupt_draft_is_ignored(backup) -> None:
    backup.directory.mkdir(parents=True)
    (backup.directory / DRAFT_FILENAME).write_text("{not json", encoding="utf-8")

    assert backup.load_draft() is None


def test_queue_ids_are_unique_and_removable(backup) -> None:
    first = backup.add_to_queue(RecordingResult(transcript="a"))
    second = backup.add_to_queue(RecordingResult(transcript="b"))

    assert first.id != second.id
    assert [item.result.transcript for item in backup.get_queue()] == ["a", "b"]

    backup.increment_attempts(first.id)
    backup.remove_from_queue(second.id)

    queue = backup.get_queue()
    assert [(item.id, item.attempts) for item in queue] == [(first.id, 1)]


def test_flush_upload_queue_keeps_failures(backup) -> None:
    backup.add_to_queue(RecordingResult(transcript="a"))
    backup.add_to_queue(RecordingResult(transcript="b"))
    sink = ListSink(failures=1)

    uploaded = flush_upload_queue(backup, sink)

    assert uploaded == 1
    assert [result.transcript for result in sink.saved] == ["b"]
    remaining = backup.get_queue()
    assert [(item.result.transcript, item.attempts) for item in remaining] == [("a", 1)]

    assert flush_upload_queue(backup, sink) == 1
    assert backup.get_queue() == []


def test_recover_draft_hands_off_and_clears(backup) -> None:
    backup.save_draft(_draft())
    sink = ListSink()

    session_id = recover_draft(backup, sink)

    assert session_id == "session-1"
    assert sink.saved[0].transcript == "Speaker 1: hello"
    assert sink.saved[0].duration_ms == 5_000
    assert backup.load_draft() is None


def test_recover_draft_skips_empty_transcript(backup) -> None:
    backup.save_draft(_draft(text="   "))

    assert recover_draft(backup, ListSink()) is None


def test_recover_draft_failure_queues_result(backup) -> None:
    backup.save_draft(_draft())

    with pytest.raises(HandoffError):
        recover_draft(backup, ListSink(failures=1))

    assert backup.load_draft() is None
    assert [item.result.transcript for item in backup.get_queue()] == ["Speaker 1: hello"]


def test_autosaver_writes_periodically(backup) -> None:
    saved = threading.Event()
    calls = []

    def _get_draft():
        calls.append(1)
        saved.set()
        return _draft()

    autosaver = Autosaver(backup, _get_draft, interval=0.01)
    autosaver.start()
    try:
        assert saved.wait(2.0)
        assert autosaver.running
    finally:
        autosaver.stop()

    assert not autosaver.running
    assert backup.load_draft() is not None


def test_autosaver_skips_missing_draft(backup) -> None:
    autosaver = Autosaver(backup, lambda: None)

    autosaver.save_now()

    assert backup.load_draft() is None
