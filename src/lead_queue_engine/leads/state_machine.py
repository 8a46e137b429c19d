"""Lead lifecycle: legal transitions and conditional writes."""

import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.errors import AlreadyResolved, InvalidTransition, LeadNotFound
from ..notifications.notifier import LeadStatusChanged, StatusNotifier
from ..storage.database import QueueDatabase
from ..storage.models import DistributionMode, Lead, LeadEvent, LeadSource, LeadStatus

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[LeadStatus, Set[LeadStatus]] = {
    LeadStatus.PENDING: {LeadStatus.RESERVED, LeadStatus.AVAILABLE},
    LeadStatus.AVAILABLE: {LeadStatus.RESERVED, LeadStatus.ABANDONED},
    LeadStatus.RESERVED: {LeadStatus.ACCEPTED, LeadStatus.REJECTED, LeadStatus.EXPIRED},
    LeadStatus.REJECTED: {LeadStatus.RESERVED, LeadStatus.AVAILABLE},
    LeadStatus.EXPIRED: {LeadStatus.RESERVED, LeadStatus.AVAILABLE},
    LeadStatus.ACCEPTED: {LeadStatus.COMPLETED},
    LeadStatus.COMPLETED: set(),
    LeadStatus.ABANDONED: set(),
}

# Clearing the reservation columns whenever a lead leaves RESERVED
CLEAR_RESERVATION = {"reserved_agent_id": None, "reserved_until": None}


def can_transition(from_status: LeadStatus, to_status: LeadStatus) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


class LeadStateMachine:
    """Owns the lead row: creation, legal transitions, history.

    Writes happen through ``apply`` inside a caller's transaction. The update
    is conditional on the status (and any holder/deadline predicates) that
    the caller read, so a caller that lost a race gets ``None`` back and
    nothing is written.
    """

    def __init__(
        self,
        db: QueueDatabase,
        notifier: Optional[StatusNotifier] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock

    def create(
        self,
        property_ref: str,
        contact_ref: str,
        team_id: str = "default",
        distribution_mode: DistributionMode = DistributionMode.ROUND_ROBIN,
        reservation_ttl_seconds: int = 600,
        referrer_agent_id: Optional[str] = None,
        source: Optional[LeadSource] = None
    ) -> Lead:
        """Persist a new PENDING lead with its mode and window snapshot."""
        if not property_ref or not contact_ref:
            raise ValueError("property_ref and contact_ref are required")
        if reservation_ttl_seconds <= 0:
            raise ValueError("Reservation window must be positive")

        if source is None:
            source = LeadSource.DIRECT if referrer_agent_id else LeadSource.BOARD

        now = self.clock()
        lead = Lead(
            lead_id=str(uuid.uuid4())[:12],
            property_ref=property_ref,
            contact_ref=contact_ref,
            team_id=team_id,
            distribution_mode=distribution_mode,
            reservation_ttl_seconds=int(reservation_ttl_seconds),
            source=source,
            referrer_agent_id=referrer_agent_id,
            created_at=now,
            updated_at=now,
        )
        self.db.insert_lead(lead)
        logger.info(f"Lead {lead.lead_id} created ({distribution_mode.value}, team {team_id})")
        self.publish(LeadStatusChanged(lead.lead_id, LeadStatus.PENDING, referrer_agent_id, None, now))
        return lead

    def get(self, lead_id: str) -> Lead:
        lead = self.db.get_lead(lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    def load(self, conn: sqlite3.Connection, lead_id: str) -> Lead:
        """Read a lead inside an open transaction."""
        lead = self.db.get_lead(lead_id, conn)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    def history(self, lead_id: str, limit: int = 100) -> List[LeadEvent]:
        self.get(lead_id)
        return self.db.get_events(lead_id, limit)

    def apply(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        to_status: LeadStatus,
        now: datetime,
        changes: Optional[Dict[str, Any]] = None,
        conditions: Optional[Dict[str, Any]] = None,
        live_at: Optional[datetime] = None,
        lapsed_at: Optional[datetime] = None,
        agent_id: Optional[str] = None,
        detail: Optional[str] = None
    ) -> Optional[LeadStatusChanged]:
        """Move ``lead`` from the status it was read in to ``to_status``.

        Returns the event to publish once the transaction commits, or None if
        the row no longer matched.
        """
        if not can_transition(lead.status, to_status):
            raise InvalidTransition(lead.lead_id, lead.status, to_status)

        values = dict(changes or {})
        values["status"] = to_status
        if lead.status == LeadStatus.RESERVED:
            for column, value in CLEAR_RESERVATION.items():
                values.setdefault(column, value)

        won = self.db.compare_and_set_lead(
            conn,
            lead.lead_id,
            expected=[lead.status],
            changes=values,
            now=now,
            conditions=conditions,
            live_at=live_at,
            lapsed_at=lapsed_at,
        )
        if not won:
            logger.debug(f"Lead {lead.lead_id}: lost {lead.status.value} -> {to_status.value}")
            return None

        self.db.insert_event(conn, lead.lead_id, lead.status, to_status, agent_id, detail, now)
        return LeadStatusChanged(lead.lead_id, to_status, agent_id, lead.status, now)

    def publish(self, event: Optional[LeadStatusChanged]):
        if event is not None and self.notifier is not None:
            self.notifier.publish(event)

    def mark_available(self, lead_id: str, detail: str = "no eligible agent") -> Lead:
        """Park a lead in the open pool after distribution found nobody.

        A lead another caller already moved on is returned unchanged.
        """
        now = self.clock()
        event = None
        with self.db.connection(immediate=True) as conn:
            lead = self.load(conn, lead_id)
            if lead.status in (LeadStatus.PENDING, LeadStatus.REJECTED, LeadStatus.EXPIRED):
                event = self.apply(conn, lead, LeadStatus.AVAILABLE, now, detail=detail)
        if event is not None:
            logger.info(f"Lead {lead_id} is AVAILABLE ({detail})")
            self.publish(event)
        return self.get(lead_id)

    def complete(self, lead_id: str) -> Lead:
        """ACCEPTED -> COMPLETED; frees a slot for the assigned agent."""
        now = self.clock()
        with self.db.connection(immediate=True) as conn:
            lead = self.load(conn, lead_id)
            if lead.status == LeadStatus.COMPLETED:
                raise AlreadyResolved(lead_id, lead.status)
            event = self.apply(
                conn, lead, LeadStatus.COMPLETED, now,
                changes={"completed_at": now},
                agent_id=lead.assigned_agent_id,
                detail="completed",
            )
            if event is None:
                raise AlreadyResolved(lead_id, lead.status)
            if lead.assigned_agent_id:
                self.db.bump_agent_counters(conn, lead.assigned_agent_id, active_lead_count=-1)

        logger.info(f"Lead {lead_id} completed by {lead.assigned_agent_id}")
        self.publish(event)
        return self.get(lead_id)

    def abandon(self, lead_id: str, detail: str = "no taker", now: Optional[datetime] = None) -> bool:
        """AVAILABLE -> ABANDONED. Returns False if the lead moved on."""
        now = now or self.clock()
        with self.db.connection(immediate=True) as conn:
            lead = self.load(conn, lead_id)
            if lead.status != LeadStatus.AVAILABLE:
                return False
            event = self.apply(conn, lead, LeadStatus.ABANDONED, now, detail=detail)
        if event is None:
            return False
        logger.info(f"Lead {lead_id} abandoned ({detail})")
        self.publish(event)
        return True

    def record_contact(self, lead_id: str, at: Optional[datetime] = None) -> Lead:
        """Note client contact reported by the CRM.

        Offset-aware times are converted to the engine's naive local clock.
        """
        if at is None:
            at = self.clock()
        elif at.tzinfo is not None:
            at = at.astimezone().replace(tzinfo=None)
        if not self.db.update_contact(lead_id, at):
            raise LeadNotFound(lead_id)
        return self.get(lead_id)
