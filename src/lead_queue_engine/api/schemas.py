"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..distribution.distributor import DistributionResult
from ..leads.reservations import Reservation
from ..storage.models import (
    AgentQueueEntry,
    AgentStatus,
    DistributionMode,
    DistributionSettings,
    Lead,
    LeadEvent,
    LeadSource,
    ScoreLedgerEntry,
)


# === REQUESTS ===

class LeadCreateRequest(BaseModel):
    property_ref: str = Field(..., min_length=1)
    contact_ref: str = Field(..., min_length=1)
    referrer_agent_id: Optional[str] = None
    distribution_mode: Optional[DistributionMode] = None
    team_id: str = "default"
    source: Optional[LeadSource] = None


class AgentActionRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)


class AssignRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)
    ttl_minutes: Optional[int] = Field(None, gt=0, description="Override the lead's reservation window")


class ContactRequest(BaseModel):
    at: Optional[datetime] = None


class JoinQueueRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)
    team_id: str = "default"


class StatusRequest(BaseModel):
    status: AgentStatus


class SetScoreRequest(BaseModel):
    score: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1)


class AdjustScoreRequest(BaseModel):
    points: int
    description: str = Field(..., min_length=1)


class BonusRequest(BaseModel):
    count: int


class SettingsRequest(BaseModel):
    mode: DistributionMode
    reservation_ttl_seconds: Optional[int] = Field(None, gt=0)


# === RESPONSES ===

class LeadResponse(BaseModel):
    lead_id: str
    team_id: str
    property_ref: str
    contact_ref: str
    status: str
    distribution_mode: str
    reservation_ttl_seconds: int
    source: str
    referrer_agent_id: Optional[str] = None
    reserved_agent_id: Optional[str] = None
    reserved_until: Optional[datetime] = None
    assigned_agent_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    responded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_contact_at: Optional[datetime] = None
    version: int

    @classmethod
    def from_lead(cls, lead: Lead) -> "LeadResponse":
        return cls(
            lead_id=lead.lead_id,
            team_id=lead.team_id,
            property_ref=lead.property_ref,
            contact_ref=lead.contact_ref,
            status=lead.status.value,
            distribution_mode=lead.distribution_mode.value,
            reservation_ttl_seconds=lead.reservation_ttl_seconds,
            source=lead.source.value,
            referrer_agent_id=lead.referrer_agent_id,
            reserved_agent_id=lead.reserved_agent_id,
            reserved_until=lead.reserved_until,
            assigned_agent_id=lead.assigned_agent_id,
            created_at=lead.created_at,
            updated_at=lead.updated_at,
            responded_at=lead.responded_at,
            completed_at=lead.completed_at,
            last_contact_at=lead.last_contact_at,
            version=lead.version,
        )


class DistributionResponse(BaseModel):
    success: bool = True
    lead: LeadResponse
    agent_id: Optional[str] = None
    pending_manual_assignment: bool

    @classmethod
    def from_result(cls, result: DistributionResult) -> "DistributionResponse":
        return cls(
            lead=LeadResponse.from_lead(result.lead),
            agent_id=result.agent_id,
            pending_manual_assignment=result.pending_manual_assignment,
        )


class ReservationResponse(BaseModel):
    success: bool = True
    lead_id: str
    agent_id: str
    reserved_until: datetime
    via: str

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            lead_id=reservation.lead_id,
            agent_id=reservation.agent_id,
            reserved_until=reservation.reserved_until,
            via=reservation.via,
        )


class LeadEventResponse(BaseModel):
    from_status: Optional[str] = None
    to_status: str
    agent_id: Optional[str] = None
    detail: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_event(cls, event: LeadEvent) -> "LeadEventResponse":
        return cls(
            from_status=event.from_status.value if event.from_status else None,
            to_status=event.to_status.value,
            agent_id=event.agent_id,
            detail=event.detail,
            created_at=event.created_at,
        )


class AgentResponse(BaseModel):
    agent_id: str
    team_id: str
    status: str
    score: int
    position: Optional[int] = None
    active_lead_count: int
    bonus_lead_count: int
    total_accepted: int
    total_rejected: int
    total_expired: int
    avg_response_time: Optional[float] = None
    last_activity_at: datetime

    @classmethod
    def from_entry(cls, entry: AgentQueueEntry, position: Optional[int] = None) -> "AgentResponse":
        return cls(
            agent_id=entry.agent_id,
            team_id=entry.team_id,
            status=entry.status.value,
            score=entry.score,
            position=position if position is not None else entry.position,
            active_lead_count=entry.active_lead_count,
            bonus_lead_count=entry.bonus_lead_count,
            total_accepted=entry.total_accepted,
            total_rejected=entry.total_rejected,
            total_expired=entry.total_expired,
            avg_response_time=entry.avg_response_time,
            last_activity_at=entry.last_activity_at,
        )


class LedgerEntryResponse(BaseModel):
    id: int
    action: str
    points: int
    description: Optional[str] = None
    lead_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: ScoreLedgerEntry) -> "LedgerEntryResponse":
        return cls(
            id=entry.id,
            action=entry.action.value,
            points=entry.points,
            description=entry.description,
            lead_id=entry.lead_id,
            created_at=entry.created_at,
        )


class HistoryResponse(BaseModel):
    agent_id: str
    entries: List[LedgerEntryResponse]
    next_cursor: Optional[int] = None


class SettingsResponse(BaseModel):
    team_id: str
    mode: str
    reservation_ttl_seconds: Optional[int] = None
    updated_at: datetime

    @classmethod
    def from_settings(cls, settings: DistributionSettings) -> "SettingsResponse":
        return cls(
            team_id=settings.team_id,
            mode=settings.mode.value,
            reservation_ttl_seconds=settings.reservation_ttl_seconds,
            updated_at=settings.updated_at,
        )


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: str


ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}
