"""Tests for roster and ranking."""

import pytest

from lead_queue_engine.core.config import QueueConfig
from lead_queue_engine.core.errors import AgentNotFound
from lead_queue_engine.queue import AgentRoster, RankingTable, ScoreLedger
from lead_queue_engine.storage.models import AgentStatus, LedgerAction


@pytest.fixture
def roster(db, clock):
    return AgentRoster(db, clock)


@pytest.fixture
def ledger(db, clock):
    return ScoreLedger(db, clock)


@pytest.fixture
def ranking(db):
    return RankingTable(db, QueueConfig())


class TestRoster:
    """Tests for AgentRoster."""

    def test_join_twice_keeps_entry(self, roster, ledger):
        roster.join_queue("alice")
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)

        entry = roster.join_queue("alice")
        assert entry.score == 5
        assert len(roster.list()) == 1

    def test_set_status_keeps_counters(self, roster, ledger):
        roster.join_queue("alice")
        ledger.record_event("alice", LedgerAction.ACCEPTED, 5)

        entry = roster.set_status("alice", AgentStatus.INACTIVE)
        assert entry.status == AgentStatus.INACTIVE
        assert entry.score == 5

    def test_unknown_agent(self, roster):
        with pytest.raises(AgentNotFound):
            roster.get("ghost")
        with pytest.raises(AgentNotFound):
            roster.set_status("ghost", AgentStatus.ACTIVE)

    def test_bonus_leads_never_negative(self, roster):
        roster.join_queue("alice")
        assert roster.grant_bonus_leads("alice", 2).bonus_lead_count == 2
        assert roster.grant_bonus_leads("alice", -5).bonus_lead_count == 0


class TestRanking:
    """Tests for RankingTable ordering."""

    def test_score_descending(self, roster, ledger, ranking):
        for agent_id in ("alice", "bob", "carol"):
            roster.join_queue(agent_id)
        ledger.record_event("bob", LedgerAction.ACCEPTED, 10)
        ledger.record_event("carol", LedgerAction.ACCEPTED, 5)

        assert ranking.rank() == ["bob", "carol", "alice"]

    def test_tie_broken_by_least_recent_activity(self, roster, ledger, ranking, clock):
        roster.join_queue("zed")
        clock.advance(minutes=1)
        roster.join_queue("amy")

        assert ranking.rank() == ["zed", "amy"]

    def test_full_tie_broken_by_id(self, roster, ranking):
        """Equal score and activity time: id order, stable across calls."""
        for agent_id in ("delta", "alpha", "charlie", "bravo"):
            roster.join_queue(agent_id)

        expected = ["alpha", "bravo", "charlie", "delta"]
        for _ in range(5):
            assert ranking.rank() == expected

    def test_inactive_agents_excluded(self, roster, ranking):
        roster.join_queue("alice")
        roster.join_queue("bob")
        roster.set_status("alice", AgentStatus.INACTIVE)

        assert ranking.rank() == ["bob"]
        assert ranking.position_of("alice") is None
        assert ranking.position_of("bob") == 1
        assert ranking.position_of("ghost") is None

    def test_rank_reflects_ledger_on_next_read(self, roster, ledger, ranking):
        roster.join_queue("alice")
        roster.join_queue("bob")
        assert ranking.position_of("bob") == 2

        ledger.manual_adjustment("bob", 50, "promotion")
        assert ranking.position_of("bob") == 1

    def test_entries_have_positions(self, roster, ledger, ranking):
        roster.join_queue("alice")
        roster.join_queue("bob")
        ledger.record_event("bob", LedgerAction.ACCEPTED, 5)

        entries = ranking.entries()
        assert [(e.agent_id, e.position) for e in entries] == [("bob", 1), ("alice", 2)]

    def test_teams_ranked_separately(self, roster, ranking):
        roster.join_queue("alice", team_id="north")
        roster.join_queue("bob", team_id="south")

        assert ranking.rank("north") == ["alice"]
        assert ranking.rank("south") == ["bob"]

    def test_eligibility_respects_team(self, roster, ranking):
        roster.join_queue("alice", team_id="north")

        assert ranking.is_eligible("alice", team_id="north")
        assert not ranking.is_eligible("alice", team_id="south")
        assert ranking.is_eligible("alice")


class TestNextCandidate:
    """Tests for candidate selection."""

    def test_skips_excluded(self, roster, ranking):
        for agent_id in ("alice", "bob", "carol"):
            roster.join_queue(agent_id)

        assert ranking.next_candidate() == "alice"
        assert ranking.next_candidate(excluding={"alice"}) == "bob"
        assert ranking.next_candidate(excluding={"alice", "bob", "carol"}) is None

    def test_empty_queue(self, ranking):
        assert ranking.next_candidate() is None

    def test_capacity_cap(self, db, roster):
        roster.join_queue("alice")
        roster.join_queue("bob")
        with db.connection() as conn:
            db.bump_agent_counters(conn, "alice", active_lead_count=1)

        capped = RankingTable(db, QueueConfig(max_active_leads=1))
        assert capped.next_candidate() == "bob"
        assert not capped.is_eligible("alice")

        roster.grant_bonus_leads("alice", 1)
        assert capped.next_candidate() == "alice"
        assert capped.is_eligible("alice")
