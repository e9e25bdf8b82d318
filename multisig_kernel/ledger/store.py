"""
Decision Ledger — append-only, hash-chained history of pending actions.

Every lifecycle step of every action (created, approved, declined, resolved,
expired, submitted, submission failed) produces one LedgerEntry.

Behavioral Contract:
- Append-only. No entry is ever modified or deleted, including entries of
  actions the coordinator has since forgotten.
- Each entry is hashed and chained to the previous entry (tamper-evident).
- Queryable by action, event type and recency.
"""

import hashlib
import json
import logging
import sqlite3
import threading
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from multisig_kernel.models.ledger import LedgerEntry, LedgerEvent

logger = logging.getLogger(__name__)


def _entry_signature(entry: LedgerEntry) -> str:
    entry_dict = entry.model_dump(mode="json")
    # An entry's own signature is never part of its hash
    entry_dict["signature"] = ""
    entry_bytes = json.dumps(entry_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(entry_bytes).hexdigest()


class DecisionLedger:
    """
    Append-only decision ledger.
    SQLite-backed; ":memory:" for tests.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the ledger table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS ledger (
                id TEXT PRIMARY KEY,
                action_id TEXT NOT NULL,
                event TEXT NOT NULL,
                principal TEXT,
                signature TEXT NOT NULL,
                prior_entry_hash TEXT,
                entry_json TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_action_id ON ledger(action_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_event ON ledger(event)
        """)
        self._conn.commit()

    def append(
        self,
        action_id: str,
        event: LedgerEvent,
        principal: Optional[str] = None,
        detail: Optional[dict] = None,
        recorded_at: Optional[datetime] = None,
    ) -> LedgerEntry:
        """Append an entry, chaining it to the latest one."""
        entry = LedgerEntry(
            id=f"led_{uuid4().hex[:12]}",
            action_id=action_id,
            event=event,
            principal=principal,
            detail=detail or {},
            recorded_at=recorded_at or datetime.utcnow(),
        )
        with self._lock:
            entry.prior_entry_hash = self._get_latest_hash()
            entry.signature = _entry_signature(entry)
            self._conn.execute(
                """
                INSERT INTO ledger (
                    id, action_id, event, principal,
                    signature, prior_entry_hash, entry_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.action_id,
                    entry.event.value,
                    entry.principal,
                    entry.signature,
                    entry.prior_entry_hash,
                    json.dumps(entry.model_dump(mode="json"), default=str),
                ),
            )
            self._conn.commit()
        logger.debug(f"Ledger {entry.event.value} for {action_id}")
        return entry

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM ledger ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _fetch(self, sql: str, params: tuple = ()) -> List[LedgerEntry]:
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [LedgerEntry.model_validate_json(r["entry_json"]) for r in rows]

    def get_by_action(self, action_id: str) -> List[LedgerEntry]:
        """Full history of one action, oldest first."""
        return self._fetch(
            "SELECT entry_json FROM ledger WHERE action_id = ? ORDER BY rowid",
            (action_id,),
        )

    def query_by_event(self, event: LedgerEvent) -> List[LedgerEntry]:
        return self._fetch(
            "SELECT entry_json FROM ledger WHERE event = ? ORDER BY rowid",
            (LedgerEvent(event).value,),
        )

    def query_recent(self, limit: int = 50) -> List[LedgerEntry]:
        entries = self._fetch(
            "SELECT entry_json FROM ledger ORDER BY rowid DESC LIMIT ?", (limit,)
        )
        return list(reversed(entries))

    def verify_chain_integrity(self) -> bool:
        """Verify no entries have been tampered with."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT entry_json, signature FROM ledger ORDER BY rowid"
            ).fetchall()

        prior_sig = None
        for row in rows:
            entry = LedgerEntry.model_validate_json(row["entry_json"])
            if entry.signature != row["signature"]:
                return False
            if _entry_signature(entry) != entry.signature:
                return False
            if entry.prior_entry_hash != prior_sig:
                return False
            prior_sig = entry.signature
        return True

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) as cnt FROM ledger").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()
