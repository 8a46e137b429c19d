"""Tests for the score ledger."""

import sqlite3

import pytest

from lead_queue_engine.core.errors import AgentNotFound, LedgerIntegrityFault, StorageFault
from lead_queue_engine.queue import AgentRoster, ScoreLedger
from lead_queue_engine.storage.models import LedgerAction


@pytest.fixture
def ledger(db, clock):
    return ScoreLedger(db, clock)


@pytest.fixture
def roster(db, clock):
    roster = AgentRoster(db, clock)
    roster.join_queue("alice")
    roster.join_queue("bob")
    return roster


class TestRecordEvent:
    """Tests for appending ledger entries."""

    def test_cached_score_moves_with_entry(self, ledger, roster):
        """Cached score and ledger sum stay equal after each append."""
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5, lead_id="lead-1")
        ledger.record_event("alice", LedgerAction.REJECTED, -5, lead_id="lead-2")
        ledger.record_event("alice", LedgerAction.FAST_RESPONSE, 5)

        assert ledger.current_score("alice") == 5
        assert ledger.cached_score("alice") == 5
        ledger.verify("alice")

    def test_unknown_agent(self, ledger, roster):
        with pytest.raises(AgentNotFound):
            ledger.record_event("nobody", LedgerAction.ACCEPTED, 5)

    def test_entries_are_append_only(self, ledger, roster, db):
        """Updates and deletes on the ledger table are refused."""
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)

        with pytest.raises(StorageFault):
            with db.connection() as conn:
                conn.execute("UPDATE score_ledger SET points = 100")
        with pytest.raises(StorageFault):
            with db.connection() as conn:
                conn.execute("DELETE FROM score_ledger")

        assert ledger.current_score("alice") == 5

    def test_score_consistency_over_many_events(self, ledger, roster):
        deltas = [5, 5, -5, -8, 3, -1, 12, -8]
        for points in deltas:
            ledger.record_event("bob", LedgerAction.MANUAL_ADJUSTMENT, points, "batch")

        assert ledger.current_score("bob") == sum(deltas)
        assert roster.get("bob").score == sum(deltas)


class TestManualAdjustments:
    """Tests for administrative score changes."""

    def test_description_required(self, ledger, roster):
        with pytest.raises(ValueError):
            ledger.manual_adjustment("alice", 10, "   ")

    def test_adjustment_recorded(self, ledger, roster):
        ledger.manual_adjustment("alice", 10, "  training completed ")

        entry = next(ledger.history("alice"))
        assert entry.action == LedgerAction.MANUAL_ADJUSTMENT
        assert entry.points == 10
        assert entry.description == "training completed"

    def test_set_score_records_exact_delta(self, ledger, roster):
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)
        ledger.record_event("alice", LedgerAction.EXPIRED, -8)

        ledger.set_score("alice", 500, "bonus campaign")

        entry = next(ledger.history("alice"))
        assert entry.action == LedgerAction.MANUAL_ADJUSTMENT
        assert entry.points == 503
        assert "bonus campaign" in entry.description
        assert ledger.current_score("alice") == 500

    def test_set_score_same_value_is_noop(self, ledger, roster):
        ledger.set_score("alice", 20, "seed")
        assert ledger.set_score("alice", 20, "again") is None
        assert len(list(ledger.history("alice"))) == 1

    def test_set_score_rejects_negative(self, ledger, roster):
        with pytest.raises(ValueError):
            ledger.set_score("alice", -1, "oops")

    def test_set_score_unknown_agent(self, ledger, roster):
        with pytest.raises(AgentNotFound):
            ledger.set_score("nobody", 10, "seed")


class TestHistory:
    """Tests for cursor-paged ledger history."""

    def test_newest_first_with_cursor(self, ledger, roster):
        ids = [
            ledger.record_event("alice", LedgerAction.MANUAL_ADJUSTMENT, i, f"entry {i}")
            for i in range(1, 6)
        ]

        first_page = list(ledger.history("alice", limit=2))
        assert [e.id for e in first_page] == [ids[4], ids[3]]

        second_page = list(ledger.history("alice", limit=2, cursor=first_page[-1].id))
        assert [e.id for e in second_page] == [ids[2], ids[1]]

    def test_history_is_restartable(self, ledger, roster):
        for i in range(3):
            ledger.record_event("alice", LedgerAction.ACCEPTED, 5)

        first = [e.id for e in ledger.history("alice", limit=10)]
        second = [e.id for e in ledger.history("alice", limit=10)]
        assert first == second

    def test_zero_limit_yields_nothing(self, ledger, roster):
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)
        assert list(ledger.history("alice", limit=0)) == []

    def test_iter_history_walks_all_pages(self, ledger, roster):
        for i in range(7):
            ledger.record_event("bob", LedgerAction.MANUAL_ADJUSTMENT, 1, "tick")
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)

        entries = list(ledger.iter_history("bob", page_size=3))
        assert len(entries) == 7
        assert all(e.agent_id == "bob" for e in entries)


class TestIntegrity:
    """Tests for cache verification and reconciliation."""

    def _corrupt_cache(self, db, agent_id, value):
        conn = sqlite3.connect(db.db_path)
        conn.execute("UPDATE agent_queue SET score = ? WHERE agent_id = ?", (value, agent_id))
        conn.commit()
        conn.close()

    def test_verify_detects_divergence(self, ledger, roster, db):
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)
        self._corrupt_cache(db, "alice", 99)

        with pytest.raises(LedgerIntegrityFault) as exc_info:
            ledger.verify("alice")
        assert exc_info.value.cached == 99
        assert exc_info.value.ledger == 5

    def test_reconcile_writes_audit_entry(self, ledger, roster, db):
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)
        self._corrupt_cache(db, "alice", 99)

        assert ledger.reconcile("alice") is True
        assert ledger.cached_score("alice") == 5

        audit = db.get_audit_log("alice")
        assert len(audit) == 1
        assert audit[0]["cached_score"] == 99
        assert audit[0]["ledger_score"] == 5

    def test_reconcile_consistent_agent(self, ledger, roster, db):
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)
        assert ledger.reconcile("alice") is False
        assert db.get_audit_log() == []
