"""End-to-end distribution tests through LeadDistributor."""

import threading
from datetime import timedelta

import pytest

from lead_queue_engine.core.config import QueueConfig
from lead_queue_engine.core.errors import (
    AgentNotFound,
    AlreadyExpired,
    AlreadyReserved,
    AlreadyResolved,
    LeadQueueError,
)
from lead_queue_engine.distribution import LeadDistributor
from lead_queue_engine.storage.models import (
    AgentStatus,
    DistributionMode,
    LeadSource,
    LeadStatus,
    LedgerAction,
)


def last_entry(distributor, agent_id):
    return next(distributor.ledger.history(agent_id))


class TestScenarios:
    """Round robin, expiry, acceptance, capturer-first and score override."""

    def test_reject_moves_lead_to_next_agent(self, distributor, three_agents, db):
        result = distributor.create_lead("prop-1", "contact-1")
        lead_id = result.lead.lead_id
        assert result.agent_id == "agent-a"
        assert "agent-b" not in db.offered_agents(lead_id)

        after = distributor.reject(lead_id, "agent-a")

        entry = last_entry(distributor, "agent-a")
        assert entry.action == LedgerAction.REJECTED
        assert entry.points == -5
        assert after.agent_id == "agent-b"
        assert after.lead.status == LeadStatus.RESERVED

    def test_expiry_moves_lead_on_with_larger_penalty(self, distributor, three_agents, clock):
        lead_id = distributor.create_lead("prop-1", "contact-1").lead.lead_id
        distributor.reject(lead_id, "agent-a")

        clock.advance(minutes=10, seconds=1)
        distributor.sweep()

        expired = last_entry(distributor, "agent-b")
        rejected = last_entry(distributor, "agent-a")
        assert expired.action == LedgerAction.EXPIRED
        assert expired.points < rejected.points
        assert distributor.get_lead(lead_id).reserved_agent_id == "agent-c"

    def test_accept_within_window(self, distributor, three_agents, clock):
        lead_id = distributor.create_lead("prop-1", "contact-1").lead.lead_id
        distributor.reject(lead_id, "agent-a")
        clock.advance(minutes=11)
        distributor.sweep()

        clock.advance(minutes=3)
        lead = distributor.accept(lead_id, "agent-c")

        assert lead.status == LeadStatus.ACCEPTED
        assert lead.responded_at == clock()
        actions = [e.action for e in distributor.ledger.history("agent-c")]
        assert LedgerAction.ACCEPTED in actions
        assert distributor.roster.get("agent-c").total_accepted == 1

    def test_capturer_first_goes_to_referrer(self, distributor, three_agents):
        distributor.join_queue("agent-x")
        distributor.adjust_score("agent-x", -20, "probation")
        assert distributor.ranking.rank()[-1] == "agent-x"

        result = distributor.create_lead(
            "prop-1", "contact-1",
            referrer_agent_id="agent-x",
            distribution_mode=DistributionMode.CAPTURER_FIRST,
        )

        assert result.agent_id == "agent-x"
        assert result.lead.source == LeadSource.DIRECT

    def test_set_score_reorders_ranking(self, distributor, three_agents):
        distributor.adjust_score("agent-a", -3, "late report")
        assert distributor.ranking.rank()[0] == "agent-b"

        agent = distributor.set_score("agent-a", 500, "bonus campaign")

        entry = last_entry(distributor, "agent-a")
        assert entry.action == LedgerAction.MANUAL_ADJUSTMENT
        assert entry.points == 503
        assert agent.score == 500
        assert distributor.ranking.rank()[0] == "agent-a"


class TestExhaustion:
    """Every agent passes: the lead ends up in the open pool."""

    def test_all_agents_reject(self, distributor, three_agents):
        result = distributor.create_lead("prop-1", "contact-1")
        lead_id = result.lead.lead_id

        for agent_id in three_agents:
            assert result.agent_id == agent_id
            result = distributor.reject(lead_id, agent_id)

        assert result.no_eligible_agent
        assert result.pending_manual_assignment
        assert result.lead.status == LeadStatus.AVAILABLE

    def test_mixed_rejections_and_expiries(self, distributor, three_agents, clock):
        lead_id = distributor.create_lead("prop-1", "contact-1").lead.lead_id

        distributor.reject(lead_id, "agent-a")
        clock.advance(minutes=11)
        distributor.sweep()
        clock.advance(minutes=11)
        distributor.sweep()

        lead = distributor.get_lead(lead_id)
        assert lead.status == LeadStatus.AVAILABLE
        assert distributor.db.offered_agents(lead_id) == set(three_agents)

        # Nobody new: further sweeps leave it alone
        assert distributor.sweep().redistributed == 0
        assert distributor.distribute(lead_id).pending_manual_assignment

    def test_no_agents_at_all(self, distributor):
        result = distributor.create_lead("prop-1", "contact-1")
        assert result.pending_manual_assignment
        assert result.agent_id is None

    def test_inactive_agents_never_offered(self, distributor, three_agents):
        distributor.set_status("agent-a", AgentStatus.INACTIVE)
        result = distributor.create_lead("prop-1", "contact-1")
        assert result.agent_id == "agent-b"


class TestManualAndClaim:
    """Tests for admin assignment and self-claims."""

    def test_manual_assign_open_lead(self, distributor, three_agents, clock):
        result = distributor.create_lead("prop-1", "contact-1", distribution_mode=DistributionMode.MANUAL)
        reservation = distributor.manual_assign(result.lead.lead_id, "agent-c", ttl=timedelta(minutes=30))

        assert reservation.via == "manual"
        assert reservation.reserved_until == clock() + timedelta(minutes=30)
        assert distributor.get_lead(result.lead.lead_id).holder == "agent-c"

    def test_manual_assign_reserved_lead(self, distributor, three_agents):
        result = distributor.create_lead("prop-1", "contact-1")
        with pytest.raises(AlreadyReserved):
            distributor.manual_assign(result.lead.lead_id, "agent-c")

    def test_manual_assign_unknown_agent(self, distributor, three_agents):
        result = distributor.create_lead("prop-1", "contact-1", distribution_mode=DistributionMode.MANUAL)
        with pytest.raises(AgentNotFound):
            distributor.manual_assign(result.lead.lead_id, "ghost")

    def test_claim_from_pool(self, distributor, three_agents):
        result = distributor.create_lead("prop-1", "contact-1", distribution_mode=DistributionMode.MANUAL)
        reservation = distributor.claim(result.lead.lead_id, "agent-b")

        assert reservation.via == "claim"
        lead = distributor.accept(result.lead.lead_id, "agent-b")
        assert lead.assigned_agent_id == "agent-b"

    def test_claim_requires_available_lead(self, distributor, three_agents):
        result = distributor.create_lead("prop-1", "contact-1")
        with pytest.raises(AlreadyReserved):
            distributor.claim(result.lead.lead_id, "agent-c")

        distributor.accept(result.lead.lead_id, "agent-a")
        with pytest.raises(AlreadyResolved):
            distributor.claim(result.lead.lead_id, "agent-c")

    def test_inactive_agent_cannot_claim(self, distributor, three_agents):
        result = distributor.create_lead("prop-1", "contact-1", distribution_mode=DistributionMode.MANUAL)
        distributor.set_status("agent-b", AgentStatus.INACTIVE)
        with pytest.raises(ValueError):
            distributor.claim(result.lead.lead_id, "agent-b")

    def test_complete_after_lapse(self, distributor, three_agents, clock):
        result = distributor.create_lead("prop-1", "contact-1")
        clock.advance(minutes=20)

        with pytest.raises(AlreadyExpired):
            distributor.complete(result.lead.lead_id)
        assert distributor.get_lead(result.lead.lead_id).reserved_agent_id == "agent-b"


class TestSettings:
    """Tests for per-team distribution settings."""

    def test_defaults(self, distributor):
        settings = distributor.get_distribution_settings("north")
        assert settings.mode == DistributionMode.ROUND_ROBIN
        assert settings.reservation_ttl_seconds is None

    def test_settings_snapshot_onto_new_leads(self, distributor, three_agents, clock):
        distributor.set_distribution_settings("default", DistributionMode.ROUND_ROBIN, 120)
        first = distributor.create_lead("prop-1", "contact-1")
        assert first.lead.reservation_ttl_seconds == 120
        assert first.lead.reserved_until == clock() + timedelta(seconds=120)

        distributor.set_distribution_settings("default", DistributionMode.MANUAL)
        second = distributor.create_lead("prop-2", "contact-2")

        assert second.pending_manual_assignment
        assert distributor.get_lead(first.lead.lead_id).distribution_mode == DistributionMode.ROUND_ROBIN
        assert distributor.get_lead(first.lead.lead_id).reservation_ttl_seconds == 120

    def test_mode_specific_window(self, db, notifier, clock, three_agents):
        config = QueueConfig(ttl_minutes_by_mode={"CAPTURER_FIRST": 30})
        distributor = LeadDistributor(db, config, notifier, clock=clock)
        result = distributor.create_lead(
            "prop-1", "contact-1", referrer_agent_id="agent-b",
            distribution_mode=DistributionMode.CAPTURER_FIRST,
        )
        assert result.lead.reservation_ttl_seconds == 1800

    def test_invalid_window(self, distributor):
        with pytest.raises(ValueError):
            distributor.set_distribution_settings("default", DistributionMode.MANUAL, 0)


class TestNotifications:
    """Status change events from a lead's lifecycle."""

    def test_event_sequence(self, distributor, three_agents, events):
        lead_id = distributor.create_lead("prop-1", "contact-1").lead.lead_id
        distributor.reject(lead_id, "agent-a")
        distributor.accept(lead_id, "agent-b")
        distributor.complete(lead_id)

        sequence = [(e.new_status, e.agent_id) for e in events if e.lead_id == lead_id]
        assert sequence == [
            (LeadStatus.PENDING, None),
            (LeadStatus.RESERVED, "agent-a"),
            (LeadStatus.REJECTED, "agent-a"),
            (LeadStatus.RESERVED, "agent-b"),
            (LeadStatus.ACCEPTED, "agent-b"),
            (LeadStatus.COMPLETED, "agent-b"),
        ]


class TestConcurrency:
    """Many callers racing for the same lead."""

    def _race(self, calls):
        barrier = threading.Barrier(len(calls))
        outcomes = []
        lock = threading.Lock()

        def run(call):
            barrier.wait()
            try:
                value = call()
            except LeadQueueError as e:
                value = e
            with lock:
                outcomes.append(value)

        threads = [threading.Thread(target=run, args=(call,)) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return outcomes

    def test_single_holder_under_concurrent_claims(self, distributor):
        agents = [f"agent-{i}" for i in range(8)]
        for agent_id in agents:
            distributor.join_queue(agent_id)
        lead_id = distributor.create_lead(
            "prop-1", "contact-1", distribution_mode=DistributionMode.MANUAL
        ).lead.lead_id

        outcomes = self._race([
            (lambda agent_id=agent_id: distributor.claim(lead_id, agent_id)) for agent_id in agents
        ])

        winners = [o for o in outcomes if not isinstance(o, LeadQueueError)]
        losers = [o for o in outcomes if isinstance(o, LeadQueueError)]
        assert len(winners) == 1
        assert all(isinstance(o, AlreadyReserved) for o in losers)

        lead = distributor.get_lead(lead_id)
        assert lead.reserved_agent_id == winners[0].agent_id
        assert distributor.db.offered_agents(lead_id) == {winners[0].agent_id}

    def test_duplicate_accepts_apply_once(self, distributor, three_agents):
        lead_id = distributor.create_lead("prop-1", "contact-1").lead.lead_id

        outcomes = self._race([lambda: distributor.accept(lead_id, "agent-a") for _ in range(4)])

        assert sum(1 for o in outcomes if not isinstance(o, LeadQueueError)) == 1
        assert sum(1 for o in outcomes if isinstance(o, AlreadyResolved)) == 3
        assert distributor.roster.get("agent-a").total_accepted == 1
        distributor.ledger.verify("agent-a")

    def test_stale_exclusion_set_never_reoffers(self, distributor, db, monkeypatch):
        distributor.join_queue("agent-a")
        distributor.join_queue("agent-b")
        lead_id = distributor.create_lead("prop-1", "contact-1").lead.lead_id
        real_offered_agents = db.offered_agents
        interleaved = []

        def offered_then_competing_pass(lid):
            seen = real_offered_agents(lid)
            if not interleaved:
                # Another pass reserves agent-b and agent-b declines
                interleaved.append(lid)
                distributor.distribute(lid)
                distributor.reject(lid, "agent-b")
            return seen

        monkeypatch.setattr(db, "offered_agents", offered_then_competing_pass)
        distributor.reject(lead_id, "agent-a")

        assert [o.agent_id for o in db.list_offers(lead_id=lead_id)] == ["agent-a", "agent-b"]
        lead = distributor.get_lead(lead_id)
        assert lead.status == LeadStatus.AVAILABLE
        assert lead.reserved_agent_id is None
