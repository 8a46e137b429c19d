"""Distribution policies: who gets offered a lead next."""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Set, Type

from ..queue.ranking import RankingTable
from ..storage.models import DistributionMode, Lead


class DistributionPolicy(ABC):
    """Base class for distribution policies."""

    mode: DistributionMode

    def __init__(self, ranking: RankingTable):
        self.ranking = ranking

    @abstractmethod
    def select_next(self, lead: Lead, excluded: Set[str]) -> Optional[str]:
        """Pick the next agent to offer ``lead`` to, or None if nobody is eligible."""
        pass


class RoundRobinPolicy(DistributionPolicy):
    """Highest ranked eligible agent that has not seen the lead yet."""

    mode = DistributionMode.ROUND_ROBIN

    def select_next(self, lead: Lead, excluded: Set[str]) -> Optional[str]:
        return self.ranking.next_candidate(excluding=excluded, team_id=lead.team_id)


class CapturerFirstPolicy(DistributionPolicy):
    """The agent who brought the lead in gets first refusal.

    Falls back to ranked order once the referrer is excluded, inactive or
    full.
    """

    mode = DistributionMode.CAPTURER_FIRST

    def select_next(self, lead: Lead, excluded: Set[str]) -> Optional[str]:
        referrer = lead.referrer_agent_id
        if referrer and self.ranking.is_eligible(referrer, excluding=excluded, team_id=lead.team_id):
            return referrer
        return self.ranking.next_candidate(excluding=excluded, team_id=lead.team_id)


class ManualPolicy(DistributionPolicy):
    """Never auto-assigns; leads wait for an admin or a self-claim."""

    mode = DistributionMode.MANUAL

    def select_next(self, lead: Lead, excluded: Set[str]) -> Optional[str]:
        return None


POLICIES: Dict[DistributionMode, Type[DistributionPolicy]] = {
    DistributionMode.ROUND_ROBIN: RoundRobinPolicy,
    DistributionMode.CAPTURER_FIRST: CapturerFirstPolicy,
    DistributionMode.MANUAL: ManualPolicy,
}


def get_policy(mode: DistributionMode, ranking: RankingTable) -> DistributionPolicy:
    """Policy instance for a distribution mode."""
    return POLICIES[mode](ranking)
