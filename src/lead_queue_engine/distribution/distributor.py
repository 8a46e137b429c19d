"""Lead distributor: the entry point for every inbound command."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.config import QueueConfig
from ..core.errors import AlreadyExpired, AlreadyReserved, AlreadyResolved
from ..leads.reservations import RESERVABLE, Reservation, ReservationManager, SweepResult
from ..leads.state_machine import LeadStateMachine
from ..notifications.notifier import StatusNotifier
from ..queue.ledger import ScoreLedger
from ..queue.ranking import RankingTable
from ..queue.roster import AgentRoster
from ..storage.database import QueueDatabase
from ..storage.models import (
    AgentQueueEntry,
    AgentStatus,
    DistributionMode,
    DistributionSettings,
    Lead,
    LeadEvent,
    LeadSource,
    LeadStatus,
)
from .policies import get_policy

logger = logging.getLogger(__name__)


@dataclass
class DistributionResult:
    """Where a lead ended up after a distribution attempt."""

    lead: Lead
    agent_id: Optional[str] = None

    @property
    def no_eligible_agent(self) -> bool:
        return self.agent_id is None

    @property
    def pending_manual_assignment(self) -> bool:
        """Nobody could be offered the lead; it waits in the open pool."""
        return self.agent_id is None and self.lead.status == LeadStatus.AVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead.lead_id,
            "status": self.lead.status.value,
            "agent_id": self.agent_id,
            "reserved_until": self.lead.reserved_until.isoformat() if self.lead.reserved_until else None,
            "pending_manual_assignment": self.pending_manual_assignment,
        }


class LeadDistributor:
    """Wire the queue components together and expose the lead commands.

    All components share one database, one config and one clock so tests
    can drive time explicitly.
    """

    def __init__(
        self,
        db: Optional[QueueDatabase] = None,
        config: Optional[QueueConfig] = None,
        notifier: Optional[StatusNotifier] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.db = db or QueueDatabase()
        self.config = config or QueueConfig()
        self.notifier = notifier or StatusNotifier()
        self.clock = clock

        self.ledger = ScoreLedger(self.db, clock)
        self.roster = AgentRoster(self.db, clock)
        self.ranking = RankingTable(self.db, self.config)
        self.machine = LeadStateMachine(self.db, self.notifier, clock)
        self.reservations = ReservationManager(
            self.db, self.machine, self.ledger, self.config, clock,
            redistribute=self.distribute,
        )

    # === LEADS ===

    def create_lead(
        self,
        property_ref: str,
        contact_ref: str,
        referrer_agent_id: Optional[str] = None,
        distribution_mode: Optional[DistributionMode] = None,
        team_id: str = "default",
        source: Optional[LeadSource] = None
    ) -> DistributionResult:
        """Create a lead and run the first distribution attempt."""
        settings = self.get_distribution_settings(team_id)
        mode = distribution_mode or settings.mode
        if settings.reservation_ttl_seconds:
            ttl_seconds = settings.reservation_ttl_seconds
        else:
            ttl_seconds = int(self.config.ttl_for(mode).total_seconds())

        lead = self.machine.create(
            property_ref,
            contact_ref,
            team_id=team_id,
            distribution_mode=mode,
            reservation_ttl_seconds=ttl_seconds,
            referrer_agent_id=referrer_agent_id,
            source=source,
        )
        return self.distribute(lead.lead_id)

    def distribute(self, lead_id: str) -> DistributionResult:
        """Offer the lead to the next agent its policy picks.

        Agents already offered this lead are skipped. When nobody is left the
        lead is parked as AVAILABLE; that outcome is a result, not an error.
        A candidate refused because a concurrent pass already offered them
        the lead is skipped and selection runs again on fresh state.
        """
        tried: Set[str] = set()
        while True:
            lead = self.machine.get(lead_id)
            if lead.reservation_lapsed(self.clock()):
                # Expiry redistributes through the reservation manager
                self.reservations.expire(lead_id)
                lead = self.machine.get(lead_id)
            if lead.status not in RESERVABLE:
                return DistributionResult(lead, lead.holder)

            policy = get_policy(lead.distribution_mode, self.ranking)
            excluded = self.db.offered_agents(lead_id) | tried
            candidate = policy.select_next(lead, excluded)

            if candidate is None:
                if lead.status != LeadStatus.AVAILABLE:
                    lead = self.machine.mark_available(lead_id)
                    logger.info(f"No eligible agent for lead {lead_id}; pending manual assignment")
                return DistributionResult(lead, lead.holder)

            try:
                self.reservations.reserve(lead_id, candidate, via="policy")
            except (AlreadyReserved, AlreadyExpired) as e:
                logger.debug(f"Lead {lead_id} moved on before reaching {candidate}: {e}")
            except AlreadyResolved as e:
                logger.debug(f"Lead {lead_id} not reserved for {candidate}: {e}")
                tried.add(candidate)
                continue

            lead = self.machine.get(lead_id)
            return DistributionResult(lead, lead.holder)

    def accept(self, lead_id: str, agent_id: str) -> Lead:
        return self.reservations.release(lead_id, agent_id, LeadStatus.ACCEPTED)

    def reject(self, lead_id: str, agent_id: str) -> DistributionResult:
        """Decline a reservation; the lead moves straight on to the next agent."""
        self.reservations.release(lead_id, agent_id, LeadStatus.REJECTED)
        lead = self.machine.get(lead_id)
        return DistributionResult(lead, lead.holder)

    def manual_assign(
        self,
        lead_id: str,
        agent_id: str,
        ttl: Optional[timedelta] = None
    ) -> Reservation:
        """Admin override: reserve the lead for a chosen agent."""
        self.roster.get(agent_id)
        return self.reservations.reserve(lead_id, agent_id, ttl=ttl, via="manual")

    def claim(self, lead_id: str, agent_id: str) -> Reservation:
        """An ACTIVE agent picks a lead from the open pool."""
        agent = self.roster.get(agent_id)
        if not agent.is_active:
            raise ValueError(f"Agent {agent_id} is {agent.status.value} and cannot claim leads")
        return self.reservations.reserve(
            lead_id, agent_id, via="claim", allowed=frozenset({LeadStatus.AVAILABLE})
        )

    def complete(self, lead_id: str) -> Lead:
        self._settle(lead_id)
        return self.machine.complete(lead_id)

    def record_contact(self, lead_id: str, at: Optional[datetime] = None) -> Lead:
        return self.machine.record_contact(lead_id, at)

    def get_lead(self, lead_id: str) -> Lead:
        return self.machine.get(lead_id)

    def list_leads(
        self,
        status: Optional[LeadStatus] = None,
        team_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Lead]:
        return self.db.list_leads(status=status, team_id=team_id, agent_id=agent_id, limit=limit, offset=offset)

    def lead_history(self, lead_id: str) -> List[LeadEvent]:
        return self.machine.history(lead_id)

    def _settle(self, lead_id: str):
        """Expire a lapsed reservation before acting on the lead."""
        lead = self.machine.get(lead_id)
        if lead.reservation_lapsed(self.clock()) and self.reservations.expire(lead_id):
            raise AlreadyExpired(lead_id, LeadStatus.EXPIRED)

    # === AGENTS ===

    def join_queue(self, agent_id: str, team_id: str = "default") -> AgentQueueEntry:
        return self.roster.join_queue(agent_id, team_id)

    def set_status(self, agent_id: str, status: AgentStatus) -> AgentQueueEntry:
        return self.roster.set_status(agent_id, status)

    def set_score(self, agent_id: str, new_score: int, reason: str) -> AgentQueueEntry:
        self.ledger.set_score(agent_id, new_score, reason)
        return self.roster.get(agent_id)

    def adjust_score(self, agent_id: str, points: int, description: str) -> AgentQueueEntry:
        self.ledger.manual_adjustment(agent_id, points, description)
        return self.roster.get(agent_id)

    def grant_bonus_leads(self, agent_id: str, count: int) -> AgentQueueEntry:
        return self.roster.grant_bonus_leads(agent_id, count)

    # === SETTINGS ===

    def get_distribution_settings(self, team_id: str = "default") -> DistributionSettings:
        """Team settings, or the configured defaults when none were saved."""
        settings = self.db.get_settings(team_id)
        if settings is None:
            settings = DistributionSettings(team_id=team_id, mode=self.config.default_mode)
        return settings

    def set_distribution_settings(
        self,
        team_id: str,
        mode: DistributionMode,
        reservation_ttl_seconds: Optional[int] = None
    ) -> DistributionSettings:
        """Change how new leads for a team are routed. Existing leads keep their snapshot."""
        if reservation_ttl_seconds is not None and reservation_ttl_seconds <= 0:
            raise ValueError("Reservation window must be positive")
        settings = DistributionSettings(
            team_id=team_id,
            mode=mode,
            reservation_ttl_seconds=reservation_ttl_seconds,
            updated_at=self.clock(),
        )
        self.db.save_settings(settings)
        logger.info(f"Distribution for team {team_id} set to {mode.value}")
        return settings

    # === MAINTENANCE ===

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self.reservations.sweep(now)
