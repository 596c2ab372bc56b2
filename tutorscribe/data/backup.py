"""Local JSON backup: autosaved drafts and the upload retry queue."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError

from ..logging import get_logger
from .models import RecordingDraft, RecordingResult, UploadQueueItem

LOGGER = get_logger(__name__)

DRAFT_FILENAME = "recording_draft.json"
QUEUE_FILENAME = "upload_queue.json"


class LocalBackup:
    """File-backed store that never raises on read or write failures."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    @property
    def draft_path(self) -> Path:
        return self.directory / DRAFT_FILENAME

    @property
    def queue_path(self) -> Path:
        return self.directory / QUEUE_FILENAME

    def _write(self, path: Path, payload: str) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            LOGGER.error("Failed to write %s: %s", path, exc)
            return False
        return True

    # Draft

    def save_draft(self, draft: RecordingDraft) -> None:
        with self._lock:
            self._write(self.draft_path, draft.model_dump_json())

    def load_draft(self) -> Optional[RecordingDraft]:
        with self._lock:
            if not self.draft_path.exists():
                return None
            try:
                return RecordingDraft.model_validate_json(self.draft_path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                LOGGER.error("Failed to load draft: %s", exc)
                return None

    def clear_draft(self) -> None:
        with self._lock:
            try:
                self.draft_path.unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.error("Failed to clear draft: %s", exc)

    # Upload queue

    def _read_queue(self) -> List[UploadQueueItem]:
        if not self.queue_path.exists():
            return []
        try:
            raw = json.loads(self.queue_path.read_text(encoding="utf-8"))
            return [UploadQueueItem.model_validate(item) for item in raw]
        except (OSError, ValueError, TypeError) as exc:
            LOGGER.error("Failed to read upload queue: %s", exc)
            return []

    def _write_queue(self, queue: List[UploadQueueItem]) -> None:
        self._write(self.queue_path, json.dumps([item.model_dump() for item in queue], indent=2))

    def get_queue(self) -> List[UploadQueueItem]:
        with self._lock:
            return self._read_queue()

    def add_to_queue(self, result: RecordingResult) -> UploadQueueItem:
        with self._lock:
            queue = self._read_queue()
            now = time.time()
            item_id = f"queue_{int(now * 1000)}"
            existing = {item.id for item in queue}
            suffix = 1
            while item_id in existing:
                item_id = f"queue_{int(now * 1000)}_{suffix}"
                suffix += 1
            item = UploadQueueItem(id=item_id, result=result, created_at=now)
            queue.append(item)
            self._write_queue(queue)
        LOGGER.info("Queued recording %s for upload", item.id)
        return item

    def remove_from_queue(self, item_id: str) -> None:
        with self._lock:
            queue = [item for item in self._read_queue() if item.id != item_id]
            self._write_queue(queue)

    def increment_attempts(self, item_id: str) -> None:
        with self._lock:
            queue = self._read_queue()
            for item in queue:
                if item.id == item_id:
                    item.attempts += 1
                    self._write_queue(queue)
                    return


def flush_upload_queue(backup: LocalBackup, sink) -> int:
    """Retry every queued result against ``sink``; return how many succeeded."""

    uploaded = 0
    for item in backup.get_queue():
        try:
            session_id = sink.save(item.result)
        except Exception as exc:
            LOGGER.warning("Retry of %s failed (attempt %s): %s", item.id, item.attempts + 1, exc)
            backup.increment_attempts(item.id)
            continue
        backup.remove_from_queue(item.id)
        uploaded += 1
        LOGGER.info("Uploaded queued recording %s as %s", item.id, session_id)
    return uploaded


def recover_draft(backup: LocalBackup, sink) -> Optional[str]:
    """Hand the autosaved draft to ``sink``; queue it locally if that fails.

    Returns the stored session id, or ``None`` when there is nothing to
    recover. Sink errors propagate after the draft has been queued.
    """

    draft = backup.load_draft()
    if draft is None or not draft.transcript.strip():
        return None
    result = draft.to_result()
    try:
        session_id = sink.save(result)
    except Exception:
        backup.add_to_queue(result)
        backup.clear_draft()
        raise
    backup.clear_draft()
    LOGGER.info("Recovered draft saved as %s", session_id)
    return session_id


class Autosaver:
    """Background loop writing ``get_draft()`` to the backup every interval."""

    def __init__(
        self,
        backup: LocalBackup,
        get_draft: Callable[[], Optional[RecordingDraft]],
        interval: float = 10.0,
    ) -> None:
        self.backup = backup
        self.get_draft = get_draft
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self.stop()
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop,),
            name="tutorscribe-autosave",
            daemon=True,
        )
        self._thread.start()

    def save_now(self) -> None:
        try:
            draft = self.get_draft()
        except Exception:  # pragma: no cover - draft builders should not break the loop
            LOGGER.exception("Failed to build recording draft")
            return
        if draft is not None:
            self.backup.save_draft(draft)

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            self.save_now()

    def stop(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)


__all__ = ["Autosaver", "LocalBackup", "flush_upload_queue", "recover_draft"]
