"""Data models for the lead queue."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class AgentStatus(Enum):
    """Participation status of an agent in distribution."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LeadStatus(Enum):
    """Lifecycle state of a lead."""

    PENDING = "PENDING"
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        return self in (LeadStatus.COMPLETED, LeadStatus.ABANDONED)

    @property
    def is_transient(self) -> bool:
        """States that must be redistributed rather than observed."""
        return self in (LeadStatus.PENDING, LeadStatus.REJECTED, LeadStatus.EXPIRED)


class DistributionMode(Enum):
    """How new leads are routed to agents."""

    ROUND_ROBIN = "ROUND_ROBIN"
    CAPTURER_FIRST = "CAPTURER_FIRST"
    MANUAL = "MANUAL"


class LedgerAction(Enum):
    """Reason codes for score ledger entries."""

    ACCEPTED = "ACCEPTED"
    FAST_RESPONSE = "FAST_RESPONSE"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"


class OfferOutcome(Enum):
    """Outcome of a single reservation offered to an agent."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class LeadSource(Enum):
    """Where a lead came from."""

    BOARD = "board"  # distributed through the queue
    DIRECT = "direct"  # from the agent's own listing


@dataclass
class AgentQueueEntry:
    """An agent participating in lead distribution."""

    agent_id: str
    team_id: str = "default"
    score: int = 0
    status: AgentStatus = AgentStatus.ACTIVE
    active_lead_count: int = 0
    bonus_lead_count: int = 0
    total_accepted: int = 0
    total_rejected: int = 0
    total_expired: int = 0
    last_activity_at: datetime = field(default_factory=datetime.now)
    created_at: datetime = field(default_factory=datetime.now)

    # Derived on read, never persisted
    position: Optional[int] = None
    avg_response_time: Optional[float] = None  # seconds
    reserved_lead_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == AgentStatus.ACTIVE

    def has_capacity(self, max_active_leads: Optional[int]) -> bool:
        """Check the agent is below its active-lead cap (None = no cap)."""
        if max_active_leads is None:
            return True
        held = self.active_lead_count + self.reserved_lead_count
        return held < max_active_leads + self.bonus_lead_count


@dataclass(frozen=True)
class ScoreLedgerEntry:
    """Immutable record of a score change."""

    id: int
    agent_id: str
    action: LedgerAction
    points: int
    description: Optional[str] = None
    lead_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Lead:
    """An inbound contact request being routed to an agent."""

    lead_id: str
    property_ref: str
    contact_ref: str
    team_id: str = "default"
    status: LeadStatus = LeadStatus.PENDING
    distribution_mode: DistributionMode = DistributionMode.ROUND_ROBIN
    reservation_ttl_seconds: int = 600
    source: LeadSource = LeadSource.BOARD

    referrer_agent_id: Optional[str] = None
    reserved_agent_id: Optional[str] = None
    reserved_until: Optional[datetime] = None
    assigned_agent_id: Optional[str] = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    responded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_contact_at: Optional[datetime] = None

    version: int = 0

    @property
    def reservation_ttl(self) -> timedelta:
        return timedelta(seconds=self.reservation_ttl_seconds)

    @property
    def holder(self) -> Optional[str]:
        """Agent currently holding the lead (reservation or acceptance)."""
        if self.status == LeadStatus.RESERVED:
            return self.reserved_agent_id
        if self.status in (LeadStatus.ACCEPTED, LeadStatus.COMPLETED):
            return self.assigned_agent_id
        return None

    def reservation_lapsed(self, now: datetime) -> bool:
        """True when a RESERVED lead is past its deadline."""
        return (
            self.status == LeadStatus.RESERVED
            and self.reserved_until is not None
            and self.reserved_until <= now
        )


@dataclass
class LeadOffer:
    """A reservation granted to one agent for one lead."""

    id: Optional[int] = None
    lead_id: str = ""
    agent_id: str = ""
    offered_at: datetime = field(default_factory=datetime.now)
    expires_at: Optional[datetime] = None
    outcome: OfferOutcome = OfferOutcome.PENDING
    resolved_at: Optional[datetime] = None
    via: str = "policy"  # policy, manual, claim

    @property
    def response_seconds(self) -> Optional[float]:
        if self.resolved_at is None or self.outcome != OfferOutcome.ACCEPTED:
            return None
        return max(0.0, (self.resolved_at - self.offered_at).total_seconds())


@dataclass
class LeadEvent:
    """Status history record for a lead."""

    id: Optional[int] = None
    lead_id: str = ""
    from_status: Optional[LeadStatus] = None
    to_status: LeadStatus = LeadStatus.PENDING
    agent_id: Optional[str] = None
    detail: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class DistributionSettings:
    """Per-team distribution settings, snapshotted onto new leads."""

    team_id: str = "default"
    mode: DistributionMode = DistributionMode.ROUND_ROBIN
    reservation_ttl_seconds: Optional[int] = None
    updated_at: datetime = field(default_factory=datetime.now)
