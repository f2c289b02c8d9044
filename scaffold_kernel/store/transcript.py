"""
Transcript Store — the persistence collaborator for children, sessions and utterances.

Behavioral Contract:
- Utterances are append-only; only their metadata may be enriched afterwards
- Every sqlite failure surfaces as PersistenceError
- Methods are synchronous and thread-safe; async callers run them in a worker thread
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional
from uuid import uuid4

from scaffold_kernel.errors import PersistenceError, UnknownRecordError
from scaffold_kernel.models.child import ChildState, VocabularyLevel
from scaffold_kernel.models.records import (
    ChildRecord,
    SessionRecord,
    SessionStatus,
    SessionSummary,
    Speaker,
    Utterance,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class TranscriptStore:
    """
    SQLite-backed store. Prototype-grade schema; migrations are out of scope.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS children (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    age INTEGER NOT NULL,
                    vocabulary_level TEXT NOT NULL DEFAULT 'beginner',
                    ai_voice_enabled INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    child_id TEXT NOT NULL REFERENCES children(id) ON DELETE CASCADE,
                    scenario TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    summary_json TEXT,
                    state_json TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS utterances (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                    speaker TEXT NOT NULL,
                    text TEXT NOT NULL,
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    timestamp TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_utterances_session
                ON utterances(session_id, timestamp)
            """)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(str(exc)) from exc

    # --- Children ---

    def create_child(
        self,
        name: str,
        age: int,
        vocabulary_level: VocabularyLevel = VocabularyLevel.BEGINNER,
        ai_voice_enabled: bool = False,
    ) -> ChildRecord:
        child = ChildRecord(
            id=f"child_{uuid4().hex[:12]}",
            name=name,
            age=age,
            vocabulary_level=vocabulary_level,
            ai_voice_enabled=ai_voice_enabled,
            created_at=_now(),
        )
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO children (id, name, age, vocabulary_level, ai_voice_enabled, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    child.id,
                    child.name,
                    child.age,
                    child.vocabulary_level.value,
                    int(child.ai_voice_enabled),
                    child.created_at.isoformat(),
                ),
            )
        return child

    def get_child(self, child_id: str) -> Optional[ChildRecord]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM children WHERE id = ?", (child_id,)).fetchone()
        if not row:
            return None
        return ChildRecord(
            id=row["id"],
            name=row["name"],
            age=row["age"],
            vocabulary_level=VocabularyLevel(row["vocabulary_level"]),
            ai_voice_enabled=bool(row["ai_voice_enabled"]),
            created_at=_parse_time(row["created_at"]),
        )

    def set_ai_voice_enabled(self, child_id: str, enabled: bool) -> None:
        self._update_child(child_id, "ai_voice_enabled", int(enabled))

    def set_vocabulary_level(self, child_id: str, level: VocabularyLevel) -> None:
        self._update_child(child_id, "vocabulary_level", level.value)

    def _update_child(self, child_id: str, column: str, value) -> None:
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE children SET {column} = ? WHERE id = ?", (value, child_id)
            )
        if cursor.rowcount == 0:
            raise UnknownRecordError("child", child_id)

    # --- Sessions ---

    def create_session(self, child_id: str, scenario: str = "general_learning") -> SessionRecord:
        if self.get_child(child_id) is None:
            raise UnknownRecordError("child", child_id)
        session = SessionRecord(
            id=f"session_{uuid4().hex[:12]}",
            child_id=child_id,
            scenario=scenario,
            started_at=_now(),
        )
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO sessions (id, child_id, scenario, status, started_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.child_id,
                    session.scenario,
                    session.status.value,
                    session.started_at.isoformat(),
                ),
            )
        return session

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, child_id, scenario, status, started_at, completed_at "
                "FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        if not row:
            return None
        return SessionRecord(
            id=row["id"],
            child_id=row["child_id"],
            scenario=row["scenario"],
            status=SessionStatus(row["status"]),
            started_at=_parse_time(row["started_at"]),
            completed_at=_parse_time(row["completed_at"]),
        )

    def write_session_summary(self, session_id: str, summary: SessionSummary) -> None:
        """Store the summary blob and mark the session completed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE sessions SET summary_json = ?, status = ?, completed_at = ? WHERE id = ?",
                (
                    summary.model_dump_json(),
                    SessionStatus.COMPLETED.value,
                    _now().isoformat(),
                    session_id,
                ),
            )
        if cursor.rowcount == 0:
            raise UnknownRecordError("session", session_id)

    def read_session_summary(self, session_id: str) -> Optional[SessionSummary]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT summary_json FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if not row or not row["summary_json"]:
            return None
        return SessionSummary.model_validate_json(row["summary_json"])

    def write_session_state(self, session_id: str, state: ChildState) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE sessions SET state_json = ? WHERE id = ?",
                (state.model_dump_json(), session_id),
            )

    def read_session_state(self, session_id: str) -> Optional[ChildState]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT state_json FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if not row or not row["state_json"]:
            return None
        return ChildState.model_validate_json(row["state_json"])

    # --- Utterances ---

    def append_utterance(
        self,
        session_id: str,
        speaker: Speaker,
        text: str,
        metadata: Optional[dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> Utterance:
        utterance = Utterance(
            id=f"utt_{uuid4().hex[:12]}",
            session_id=session_id,
            speaker=speaker,
            text=text,
            timestamp=timestamp or _now(),
            metadata=metadata or {},
        )
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO utterances (id, session_id, speaker, text, metadata_json, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    utterance.id,
                    utterance.session_id,
                    utterance.speaker.value,
                    utterance.text,
                    json.dumps(utterance.metadata, default=str),
                    utterance.timestamp.isoformat(),
                ),
            )
        return utterance

    def enrich_metadata(self, utterance_id: str, extra: dict) -> None:
        """Merge keys into an utterance's metadata. Text is never touched."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT metadata_json FROM utterances WHERE id = ?", (utterance_id,)
            ).fetchone()
            if not row:
                raise UnknownRecordError("utterance", utterance_id)
            metadata = json.loads(row["metadata_json"])
            metadata.update(extra)
            conn.execute(
                "UPDATE utterances SET metadata_json = ? WHERE id = ?",
                (json.dumps(metadata, default=str), utterance_id),
            )

    def _deserialize(self, row: sqlite3.Row) -> Utterance:
        return Utterance(
            id=row["id"],
            session_id=row["session_id"],
            speaker=Speaker(row["speaker"]),
            text=row["text"],
            timestamp=_parse_time(row["timestamp"]),
            metadata=json.loads(row["metadata_json"]),
        )

    def recent_utterances(
        self,
        session_id: str,
        limit: int = 10,
        speaker: Optional[Speaker] = None,
    ) -> List[Utterance]:
        """Last `limit` utterances for a session, oldest first."""
        query = "SELECT * FROM utterances WHERE session_id = ?"
        params: list = [session_id]
        if speaker is not None:
            query += " AND speaker = ?"
            params.append(speaker.value)
        query += " ORDER BY timestamp DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def all_utterances(self, session_id: str) -> List[Utterance]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM utterances WHERE session_id = ? ORDER BY timestamp, rowid",
                (session_id,),
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
