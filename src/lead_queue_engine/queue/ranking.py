"""Ranking table: agent order derived from score and recency."""

from typing import Iterable, List, Optional, Set

from ..core.config import QueueConfig
from ..storage.database import QueueDatabase
from ..storage.models import AgentQueueEntry, AgentStatus


def rank_key(agent: AgentQueueEntry):
    """Score descending, then least recently active, then agent id."""
    return (-agent.score, agent.last_activity_at, agent.agent_id)


class RankingTable:
    """Derive queue positions on every read.

    Positions are never stored: each call sorts the current ACTIVE roster, so
    a ledger event or a status flip is reflected on the next read without
    any invalidation step.
    """

    def __init__(self, db: QueueDatabase, config: Optional[QueueConfig] = None):
        self.db = db
        self.config = config or QueueConfig()

    def entries(self, team_id: str = "default") -> List[AgentQueueEntry]:
        """ACTIVE agents in rank order with position and response time filled in."""
        agents = sorted(
            self.db.list_agents(team_id=team_id, status=AgentStatus.ACTIVE),
            key=rank_key
        )
        response_times = self.db.agent_response_times(a.agent_id for a in agents)
        for position, agent in enumerate(agents, start=1):
            agent.position = position
            agent.avg_response_time = response_times.get(agent.agent_id)
        return agents

    def rank(self, team_id: str = "default") -> List[str]:
        """ACTIVE agent ids in strict rank order."""
        agents = self.db.list_agents(team_id=team_id, status=AgentStatus.ACTIVE)
        return [a.agent_id for a in sorted(agents, key=rank_key)]

    def next_candidate(
        self,
        excluding: Optional[Iterable[str]] = None,
        team_id: str = "default"
    ) -> Optional[str]:
        """Highest ranked ACTIVE agent not excluded and with spare capacity."""
        excluded: Set[str] = set(excluding or ())
        agents = sorted(
            self.db.list_agents(team_id=team_id, status=AgentStatus.ACTIVE),
            key=rank_key
        )
        for agent in agents:
            if agent.agent_id in excluded:
                continue
            if not agent.has_capacity(self.config.max_active_leads):
                continue
            return agent.agent_id
        return None

    def is_eligible(
        self,
        agent_id: str,
        excluding: Optional[Iterable[str]] = None,
        team_id: Optional[str] = None
    ) -> bool:
        """ACTIVE, not excluded and below its capacity.

        With ``team_id`` the agent must also belong to that roster.
        """
        if agent_id in set(excluding or ()):
            return False
        agent = self.db.get_agent(agent_id)
        if agent is None or agent.status != AgentStatus.ACTIVE:
            return False
        if team_id is not None and agent.team_id != team_id:
            return False
        if self.config.max_active_leads is None:
            return True
        for entry in self.db.list_agents(team_id=agent.team_id, status=AgentStatus.ACTIVE):
            if entry.agent_id == agent_id:
                return entry.has_capacity(self.config.max_active_leads)
        return False

    def position_of(self, agent_id: str) -> Optional[int]:
        """1-based rank position, or None when INACTIVE or unknown."""
        agent = self.db.get_agent(agent_id)
        if agent is None or agent.status != AgentStatus.ACTIVE:
            return None
        ranked = self.rank(agent.team_id)
        if agent_id not in ranked:
            return None
        return ranked.index(agent_id) + 1
