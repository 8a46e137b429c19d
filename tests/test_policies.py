"""Tests for distribution policies."""

import pytest

from lead_queue_engine.distribution import (
    CapturerFirstPolicy,
    ManualPolicy,
    RoundRobinPolicy,
    get_policy,
)
from lead_queue_engine.storage.models import AgentStatus, DistributionMode, Lead, LedgerAction


def make_lead(referrer=None, mode=DistributionMode.ROUND_ROBIN, team_id="default"):
    return Lead(
        lead_id="lead-1",
        property_ref="prop-1",
        contact_ref="contact-1",
        team_id=team_id,
        distribution_mode=mode,
        referrer_agent_id=referrer,
    )


@pytest.fixture
def ranking(distributor, three_agents):
    # agent-c leads, agent-a trails
    distributor.ledger.record_event("agent-c", LedgerAction.MANUAL_ADJUSTMENT, 20, "seed")
    distributor.ledger.record_event("agent-b", LedgerAction.MANUAL_ADJUSTMENT, 10, "seed")
    return distributor.ranking


class TestRegistry:
    """Tests for get_policy."""

    def test_every_mode_has_a_policy(self, ranking):
        assert isinstance(get_policy(DistributionMode.ROUND_ROBIN, ranking), RoundRobinPolicy)
        assert isinstance(get_policy(DistributionMode.CAPTURER_FIRST, ranking), CapturerFirstPolicy)
        assert isinstance(get_policy(DistributionMode.MANUAL, ranking), ManualPolicy)


class TestRoundRobin:
    """Tests for RoundRobinPolicy."""

    def test_highest_ranked_first(self, ranking):
        policy = RoundRobinPolicy(ranking)
        assert policy.select_next(make_lead(), set()) == "agent-c"

    def test_walks_down_the_ranking(self, ranking):
        policy = RoundRobinPolicy(ranking)
        assert policy.select_next(make_lead(), {"agent-c"}) == "agent-b"
        assert policy.select_next(make_lead(), {"agent-c", "agent-b"}) == "agent-a"
        assert policy.select_next(make_lead(), {"agent-c", "agent-b", "agent-a"}) is None

    def test_other_team_has_nobody(self, ranking):
        policy = RoundRobinPolicy(ranking)
        assert policy.select_next(make_lead(team_id="north"), set()) is None


class TestCapturerFirst:
    """Tests for CapturerFirstPolicy."""

    def test_referrer_first_even_when_ranked_last(self, ranking):
        policy = CapturerFirstPolicy(ranking)
        assert policy.select_next(make_lead(referrer="agent-a"), set()) == "agent-a"

    def test_falls_back_once_referrer_excluded(self, ranking):
        policy = CapturerFirstPolicy(ranking)
        assert policy.select_next(make_lead(referrer="agent-a"), {"agent-a"}) == "agent-c"

    def test_inactive_referrer_skipped(self, ranking, distributor):
        distributor.set_status("agent-a", AgentStatus.INACTIVE)
        policy = CapturerFirstPolicy(ranking)
        assert policy.select_next(make_lead(referrer="agent-a"), set()) == "agent-c"

    def test_unknown_referrer_skipped(self, ranking):
        policy = CapturerFirstPolicy(ranking)
        assert policy.select_next(make_lead(referrer="outsider"), set()) == "agent-c"

    def test_referrer_from_another_team_skipped(self, ranking, distributor):
        distributor.join_queue("agent-n", team_id="north")
        policy = CapturerFirstPolicy(ranking)
        assert policy.select_next(make_lead(referrer="agent-n"), set()) == "agent-c"
        assert policy.select_next(make_lead(referrer="agent-n", team_id="north"), set()) == "agent-n"


class TestManual:
    """Tests for ManualPolicy."""

    def test_never_selects(self, ranking):
        assert ManualPolicy(ranking).select_next(make_lead(mode=DistributionMode.MANUAL), set()) is None
