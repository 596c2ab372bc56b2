"""SQLite storage for finished recording sessions."""

from __future__ import annotations

import sqlite3
import time
import uuid
from pathlib import Path
from typing import List, Optional

from .models import RecordingResult, SavedSession


class SessionStore:
    """Persistent storage built on SQLite."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def initialize(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    created_at REAL NOT NULL,
                    started_at REAL,
                    duration_ms INTEGER NOT NULL,
                    speaker_count INTEGER NOT NULL,
                    transcript TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def save_result(self, result: RecordingResult, session_id: Optional[str] = None) -> str:
        session_id = session_id or f"session-{uuid.uuid4().hex[:8]}"
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sessions (
                    id, created_at, started_at, duration_ms, speaker_count, transcript
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    time.time(),
                    result.started_at,
                    result.duration_ms,
                    result.speaker_count,
                    result.transcript,
                ),
            )
            conn.commit()
        return session_id

    def fetch_session(self, session_id: str) -> Optional[SavedSession]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, created_at, started_at, duration_ms, speaker_count, transcript "
                "FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        if not row:
            return None
        return self._row_to_session(row)

    def list_sessions(self, limit: int = 20) -> List[SavedSession]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, created_at, started_at, duration_ms, speaker_count, transcript "
                "FROM sessions ORDER BY created_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    @staticmethod
    def _row_to_session(row) -> SavedSession:
        return SavedSession(
            id=row[0],
            created_at=row[1],
            started_at=row[2],
            duration_ms=row[3],
            speaker_count=row[4],
            transcript=row[5],
        )


__all__ = ["SessionStore"]
