"""Agent roster: who participates in lead distribution."""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..core.errors import AgentNotFound
from ..storage.database import QueueDatabase
from ..storage.models import AgentQueueEntry, AgentStatus

logger = logging.getLogger(__name__)


class AgentRoster:
    """Manage agent queue entries. Entries are never deleted."""

    def __init__(self, db: QueueDatabase, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    def join_queue(
        self,
        agent_id: str,
        team_id: str = "default",
        status: AgentStatus = AgentStatus.ACTIVE
    ) -> AgentQueueEntry:
        """Add an agent to the queue. Joining twice returns the existing entry."""
        now = self.clock()
        entry = AgentQueueEntry(
            agent_id=agent_id,
            team_id=team_id,
            status=status,
            last_activity_at=now,
            created_at=now,
        )
        if self.db.insert_agent(entry):
            logger.info(f"Agent {agent_id} joined queue for team {team_id}")
        return self.get(agent_id)

    def get(self, agent_id: str) -> AgentQueueEntry:
        agent = self.db.get_agent(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    def find(self, agent_id: str) -> Optional[AgentQueueEntry]:
        return self.db.get_agent(agent_id)

    def list(self, team_id: Optional[str] = None, status: Optional[AgentStatus] = None) -> List[AgentQueueEntry]:
        return self.db.list_agents(team_id=team_id, status=status)

    def set_status(self, agent_id: str, status: AgentStatus) -> AgentQueueEntry:
        """Toggle participation. Historical counters are kept."""
        if not self.db.set_agent_status(agent_id, status, self.clock()):
            raise AgentNotFound(agent_id)
        logger.info(f"Agent {agent_id} is now {status.value}")
        return self.get(agent_id)

    def grant_bonus_leads(self, agent_id: str, count: int) -> AgentQueueEntry:
        """Raise (or lower, with a negative count) the agent's extra capacity."""
        if not self.db.add_bonus_leads(agent_id, count):
            raise AgentNotFound(agent_id)
        return self.get(agent_id)
