"""Reservation windows: granting, resolving and expiring exclusive offers."""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..core.config import QueueConfig
from ..core.errors import (
    AgentNotFound,
    AlreadyExpired,
    AlreadyReserved,
    AlreadyResolved,
    InvalidTransition,
    LeadQueueError,
)
from ..notifications.notifier import LeadStatusChanged
from ..queue.ledger import ScoreLedger
from ..storage.database import QueueDatabase
from ..storage.models import (
    DistributionMode,
    Lead,
    LeadOffer,
    LeadStatus,
    LedgerAction,
    OfferOutcome,
)
from .state_machine import LeadStateMachine

logger = logging.getLogger(__name__)

RESERVABLE = frozenset({
    LeadStatus.PENDING,
    LeadStatus.AVAILABLE,
    LeadStatus.REJECTED,
    LeadStatus.EXPIRED,
})

FINISHED = frozenset({LeadStatus.ACCEPTED, LeadStatus.COMPLETED, LeadStatus.ABANDONED})


@dataclass
class Reservation:
    """An exclusive, time-boxed offer of a lead to one agent."""

    lead_id: str
    agent_id: str
    reserved_until: datetime
    offer_id: int
    via: str = "policy"


@dataclass
class SweepResult:
    """Counts from one sweep pass."""

    expired: int = 0
    redistributed: int = 0
    abandoned: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "expired": self.expired,
            "redistributed": self.redistributed,
            "abandoned": self.abandoned,
            "errors": self.errors,
        }


class ReservationManager:
    """Grant, resolve and expire reservations.

    Each operation runs in one write transaction: the lead transition, the
    offer row, the ledger entry and the agent counters commit together or not
    at all. A lead whose window has lapsed is expired before anything else is
    evaluated, and the caller that found it lapsed gets ``AlreadyExpired``.

    ``redistribute`` is called with a lead id whenever a lead drops back into
    distribution (rejection, expiry, sweep). The distributor wires it up.
    """

    def __init__(
        self,
        db: QueueDatabase,
        machine: LeadStateMachine,
        ledger: ScoreLedger,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
        redistribute: Optional[Callable[[str], Any]] = None
    ):
        self.db = db
        self.machine = machine
        self.ledger = ledger
        self.config = config or QueueConfig()
        self.clock = clock
        self.redistribute = redistribute

    # === GRANT ===

    def reserve(
        self,
        lead_id: str,
        agent_id: str,
        ttl: Optional[timedelta] = None,
        via: str = "policy",
        allowed=RESERVABLE
    ) -> Reservation:
        """Give ``agent_id`` an exclusive window on the lead.

        ``ttl`` defaults to the window snapshotted on the lead. Policy offers
        are refused with ``AlreadyResolved`` when the agent was already offered
        this lead.
        """
        now = self.clock()
        expired_event = None
        with self.db.connection(immediate=True) as conn:
            lead = self.machine.load(conn, lead_id)
            if lead.reservation_lapsed(now):
                expired_event = self._expire_locked(conn, lead, now)
            else:
                if lead.status == LeadStatus.RESERVED:
                    raise AlreadyReserved(lead_id, lead.reserved_agent_id)
                if lead.status not in allowed:
                    raise AlreadyResolved(lead_id, lead.status)
                if self.db.get_agent(agent_id, conn) is None:
                    raise AgentNotFound(agent_id)
                if via == "policy" and self.db.last_offer(conn, lead_id, agent_id) is not None:
                    # Exclusion set, re-read under the write lock
                    raise AlreadyResolved(lead_id, lead.status)

                window = ttl if ttl is not None else lead.reservation_ttl
                if window.total_seconds() <= 0:
                    raise ValueError("Reservation window must be positive")
                until = now + window
                event = self.machine.apply(
                    conn, lead, LeadStatus.RESERVED, now,
                    changes={
                        "reserved_agent_id": agent_id,
                        "reserved_until": until,
                        "assigned_agent_id": None,
                    },
                    agent_id=agent_id,
                    detail=f"via {via}",
                )
                if event is None:
                    raise AlreadyResolved(lead_id, lead.status)
                offer_id = self.db.insert_offer(conn, LeadOffer(
                    lead_id=lead_id,
                    agent_id=agent_id,
                    offered_at=now,
                    expires_at=until,
                    via=via,
                ))

        if expired_event is not None:
            self._after_expiry(expired_event)
            raise AlreadyExpired(lead_id, LeadStatus.EXPIRED)

        logger.info(f"Lead {lead_id} reserved for {agent_id} until {until.isoformat()} ({via})")
        self.machine.publish(event)
        return Reservation(lead_id, agent_id, until, offer_id, via)

    # === RESOLVE ===

    def release(self, lead_id: str, agent_id: str, outcome: LeadStatus) -> Lead:
        """Resolve the agent's reservation as ACCEPTED or REJECTED, exactly once.

        Returns the lead as it stood right after the transition. A rejected
        lead is handed back to distribution before this returns.
        """
        if outcome not in (LeadStatus.ACCEPTED, LeadStatus.REJECTED):
            raise ValueError(f"Cannot release a reservation as {outcome.value}")

        now = self.clock()
        expired_event = None
        with self.db.connection(immediate=True) as conn:
            lead = self.machine.load(conn, lead_id)
            if lead.reservation_lapsed(now):
                expired_event = self._expire_locked(conn, lead, now)
            elif lead.status != LeadStatus.RESERVED or lead.reserved_agent_id != agent_id:
                raise self._diagnose(conn, lead, agent_id, outcome)
            elif outcome == LeadStatus.ACCEPTED:
                event = self._accept_locked(conn, lead, agent_id, now)
            else:
                event = self._reject_locked(conn, lead, agent_id, now)
            if expired_event is None:
                resolved = self.machine.load(conn, lead_id)

        if expired_event is not None:
            self._after_expiry(expired_event)
            raise AlreadyExpired(lead_id, LeadStatus.EXPIRED)

        logger.info(f"Lead {lead_id} {outcome.value.lower()} by {agent_id}")
        self.machine.publish(event)
        if outcome == LeadStatus.REJECTED:
            self._redistribute(lead_id)
        return resolved

    def _accept_locked(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        agent_id: str,
        now: datetime
    ) -> LeadStatusChanged:
        event = self.machine.apply(
            conn, lead, LeadStatus.ACCEPTED, now,
            changes={"assigned_agent_id": agent_id, "responded_at": now},
            conditions={"reserved_agent_id": agent_id},
            live_at=now,
            agent_id=agent_id,
            detail="accepted",
        )
        if event is None:
            raise AlreadyResolved(lead.lead_id, lead.status)

        offer = self.db.resolve_offer(conn, lead.lead_id, agent_id, OfferOutcome.ACCEPTED, now)
        self.ledger.record_event(
            agent_id, LedgerAction.ACCEPTED, self.config.accept_points,
            "Lead accepted", lead.lead_id, conn=conn
        )
        if (
            offer is not None
            and self.config.fast_response_points
            and now - offer.offered_at <= self.config.fast_response_window
        ):
            self.ledger.record_event(
                agent_id, LedgerAction.FAST_RESPONSE, self.config.fast_response_points,
                f"Accepted within {self.config.fast_response_minutes} minutes",
                lead.lead_id, conn=conn
            )
        self.db.bump_agent_counters(conn, agent_id, now, total_accepted=1, active_lead_count=1)
        return event

    def _reject_locked(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        agent_id: str,
        now: datetime
    ) -> LeadStatusChanged:
        event = self.machine.apply(
            conn, lead, LeadStatus.REJECTED, now,
            conditions={"reserved_agent_id": agent_id},
            live_at=now,
            agent_id=agent_id,
            detail="rejected",
        )
        if event is None:
            raise AlreadyResolved(lead.lead_id, lead.status)

        self.db.resolve_offer(conn, lead.lead_id, agent_id, OfferOutcome.REJECTED, now)
        self.ledger.record_event(
            agent_id, LedgerAction.REJECTED, -self.config.rejected_penalty,
            "Lead rejected", lead.lead_id, conn=conn
        )
        self.db.bump_agent_counters(conn, agent_id, total_rejected=1)
        return event

    def _diagnose(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        agent_id: str,
        outcome: LeadStatus
    ) -> LeadQueueError:
        """Explain why ``agent_id`` can no longer resolve this lead."""
        offer = self.db.last_offer(conn, lead.lead_id, agent_id)
        if offer is not None:
            if offer.outcome == OfferOutcome.EXPIRED:
                return AlreadyExpired(lead.lead_id, lead.status)
            return AlreadyResolved(lead.lead_id, lead.status)
        if lead.status == LeadStatus.RESERVED:
            return AlreadyReserved(lead.lead_id, lead.reserved_agent_id)
        if lead.status in FINISHED:
            return AlreadyResolved(lead.lead_id, lead.status)
        return InvalidTransition(lead.lead_id, lead.status, outcome)

    # === EXPIRE ===

    def expire(self, lead_id: str, now: Optional[datetime] = None) -> bool:
        """Force a lapsed reservation to EXPIRED.

        Returns True only for the caller that performed the expiry; a lead
        resolved in the meantime is left alone.
        """
        now = now or self.clock()
        with self.db.connection(immediate=True) as conn:
            lead = self.machine.load(conn, lead_id)
            if not lead.reservation_lapsed(now):
                return False
            event = self._expire_locked(conn, lead, now)
        if event is None:
            return False
        self._after_expiry(event)
        return True

    def _expire_locked(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        now: datetime
    ) -> Optional[LeadStatusChanged]:
        agent_id = lead.reserved_agent_id
        event = self.machine.apply(
            conn, lead, LeadStatus.EXPIRED, now,
            conditions={"reserved_agent_id": agent_id},
            lapsed_at=now,
            agent_id=agent_id,
            detail="reservation lapsed",
        )
        if event is None:
            return None

        self.db.resolve_offer(conn, lead.lead_id, agent_id, OfferOutcome.EXPIRED, now)
        self.ledger.record_event(
            agent_id, LedgerAction.EXPIRED, -self.config.expired_penalty,
            "Reservation expired without response", lead.lead_id, conn=conn
        )
        self.db.bump_agent_counters(conn, agent_id, total_expired=1)
        return event

    def _after_expiry(self, event: LeadStatusChanged):
        logger.info(f"Lead {event.lead_id} reservation for {event.agent_id} expired")
        self.machine.publish(event)
        self._redistribute(event.lead_id)

    def _redistribute(self, lead_id: str):
        if self.redistribute is not None:
            self.redistribute(lead_id)

    # === SWEEP ===

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """One maintenance pass over reservations and parked leads.

        Safe to run concurrently with live traffic: every step goes through
        the same conditional writes as the inbound commands.
        """
        now = now or self.clock()
        result = SweepResult()

        for lead_id in self.db.find_lapsed_reservations(now):
            try:
                if self.expire(lead_id, now):
                    result.expired += 1
            except LeadQueueError as e:
                result.errors += 1
                logger.warning(f"Sweep could not expire lead {lead_id}: {e}")

        stuck = [LeadStatus.PENDING, LeadStatus.REJECTED, LeadStatus.EXPIRED]
        for lead_id in self.db.find_leads_in(stuck, created_before=now):
            if self._sweep_redistribute(lead_id, result):
                result.redistributed += 1

        if self.config.redistribute_available_on_sweep:
            for lead_id in self.db.find_leads_in([LeadStatus.AVAILABLE]):
                lead = self.db.get_lead(lead_id)
                if lead is None or lead.distribution_mode == DistributionMode.MANUAL:
                    continue
                if self._sweep_redistribute(lead_id, result):
                    result.redistributed += 1

        abandon_after = self.config.abandon_after
        if abandon_after is not None:
            for lead_id in self.db.find_available_since(now - abandon_after):
                if self.machine.abandon(lead_id, detail=f"unclaimed after {abandon_after}", now=now):
                    result.abandoned += 1

        if result.expired or result.redistributed or result.abandoned:
            logger.info(f"Sweep: {result.to_dict()}")
        return result

    def _sweep_redistribute(self, lead_id: str, result: SweepResult) -> bool:
        """Redistribute one lead; True if it ended up reserved."""
        if self.redistribute is None:
            return False
        try:
            self.redistribute(lead_id)
        except LeadQueueError as e:
            result.errors += 1
            logger.warning(f"Sweep could not redistribute lead {lead_id}: {e}")
            return False
        lead = self.db.get_lead(lead_id)
        return lead is not None and lead.status == LeadStatus.RESERVED
