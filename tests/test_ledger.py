"""Tests for the Decision Ledger."""

import json
from datetime import datetime

from multisig_kernel.ledger.store import DecisionLedger
from multisig_kernel.models.ledger import LedgerEvent


class TestDecisionLedger:
    def setup_method(self):
        self.ledger = DecisionLedger(db_path=":memory:")

    def teardown_method(self):
        self.ledger.close()

    def test_append_and_retrieve(self):
        entry = self.ledger.append("prop_1", LedgerEvent.CREATED, "alice", {"required_weight": 7})

        assert entry.signature != ""
        assert entry.prior_entry_hash is None  # First entry

        history = self.ledger.get_by_action("prop_1")
        assert len(history) == 1
        assert history[0].principal == "alice"
        assert history[0].detail == {"required_weight": 7}

    def test_hash_chaining(self):
        entries = [
            self.ledger.append(f"prop_{i}", LedgerEvent.APPROVED, "bob")
            for i in range(5)
        ]
        for i in range(1, len(entries)):
            assert entries[i].prior_entry_hash == entries[i - 1].signature

    def test_chain_integrity_many_entries(self):
        for i in range(120):
            self.ledger.append(f"prop_{i % 7}", LedgerEvent.APPROVED, f"p{i}")

        assert self.ledger.count() == 120
        assert self.ledger.verify_chain_integrity() is True

    def test_tampered_entry_detected(self):
        for i in range(3):
            self.ledger.append("prop_1", LedgerEvent.APPROVED, f"p{i}")

        row = self.ledger._conn.execute(
            "SELECT id, entry_json FROM ledger ORDER BY rowid LIMIT 1 OFFSET 1"
        ).fetchone()
        data = json.loads(row["entry_json"])
        data["principal"] = "mallory"
        self.ledger._conn.execute(
            "UPDATE ledger SET entry_json = ? WHERE id = ?", (json.dumps(data), row["id"])
        )

        assert self.ledger.verify_chain_integrity() is False

    def test_query_by_event(self):
        self.ledger.append("prop_1", LedgerEvent.CREATED, "alice")
        self.ledger.append("prop_1", LedgerEvent.APPROVED, "alice")
        self.ledger.append("prop_2", LedgerEvent.CREATED, "bob")

        created = self.ledger.query_by_event(LedgerEvent.CREATED)
        assert [e.action_id for e in created] == ["prop_1", "prop_2"]
        assert self.ledger.query_by_event("approved")[0].principal == "alice"

    def test_query_recent_oldest_first(self):
        for i in range(20):
            self.ledger.append(f"prop_{i}", LedgerEvent.CREATED)

        recent = self.ledger.query_recent(limit=5)
        assert [e.action_id for e in recent] == [f"prop_{i}" for i in range(15, 20)]

    def test_recorded_at_preserved(self):
        when = datetime(2026, 1, 2, 3, 4, 5)
        self.ledger.append("prop_1", LedgerEvent.EXPIRED, recorded_at=when)
        assert self.ledger.get_by_action("prop_1")[0].recorded_at == when

    def test_unknown_action_has_no_history(self):
        assert self.ledger.get_by_action("nope") == []
