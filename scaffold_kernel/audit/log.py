"""
Audit Log — append-only, tamper-evident record of every processed turn.

Behavioral Contract:
- Records are NEVER updated or deleted
- Each record is hashed and chained to the previous record
- Audit entries hold internal reasoning; they are parent/operator-facing only
"""

import hashlib
import json
import sqlite3
import threading
from typing import List, Optional

from scaffold_kernel.errors import PersistenceError
from scaffold_kernel.models.audit import AuditRecord


def _signature(record: AuditRecord) -> str:
    record_dict = record.model_dump(mode="json")
    record_dict["signature"] = ""
    record_bytes = json.dumps(record_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(record_bytes).hexdigest()


class AuditLog:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS audit (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                child_utterance_id TEXT NOT NULL,
                action TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                record_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_session_id ON audit(session_id)
        """)
        self._conn.commit()

    def append(self, record: AuditRecord) -> AuditRecord:
        """Sign the record, chain it to the latest one, and store it."""
        with self._lock:
            try:
                record.prior_record_hash = self._latest_hash()
                record.signature = _signature(record)
                self._conn.execute(
                    """
                    INSERT INTO audit (
                        id, session_id, child_utterance_id, action,
                        signature, prior_record_hash, record_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.session_id,
                        record.child_utterance_id,
                        record.action,
                        record.signature,
                        record.prior_record_hash,
                        record.model_dump_json(),
                    ),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(str(exc)) from exc
        return record

    def _latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM audit ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def query_by_session(self, session_id: str) -> List[AuditRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM audit WHERE session_id = ? ORDER BY rowid",
                (session_id,),
            ).fetchall()
        return [AuditRecord.model_validate_json(r["record_json"]) for r in rows]

    def verify_chain_integrity(self) -> bool:
        """Verify no records have been tampered with or removed mid-chain."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json, signature FROM audit ORDER BY rowid"
            ).fetchall()

        prior_sig = None
        for row in rows:
            record = AuditRecord.model_validate_json(row["record_json"])
            if record.signature != row["signature"]:
                return False
            if _signature(record) != record.signature:
                return False
            if record.prior_record_hash != prior_sig:
                return False
            prior_sig = record.signature
        return True

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS cnt FROM audit").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()
