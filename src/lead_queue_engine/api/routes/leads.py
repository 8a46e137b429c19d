"""Lead routes: creation, reservation outcomes and lifecycle commands."""

import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...distribution.distributor import LeadDistributor
from ...storage.models import LeadStatus
from ..dependencies import get_distributor
from ..middleware.auth import verify_admin
from ..schemas import (
    ERROR_RESPONSES,
    AgentActionRequest,
    AssignRequest,
    ContactRequest,
    DistributionResponse,
    LeadCreateRequest,
    LeadEventResponse,
    LeadResponse,
    ReservationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/leads", tags=["leads"], responses=ERROR_RESPONSES)


@router.post("", response_model=DistributionResponse, status_code=201)
def create_lead(body: LeadCreateRequest, distributor: LeadDistributor = Depends(get_distributor)):
    """Create a lead and offer it to the first eligible agent."""
    result = distributor.create_lead(
        body.property_ref,
        body.contact_ref,
        referrer_agent_id=body.referrer_agent_id,
        distribution_mode=body.distribution_mode,
        team_id=body.team_id,
        source=body.source,
    )
    return DistributionResponse.from_result(result)


@router.get("", response_model=List[LeadResponse])
def list_leads(
    status: Optional[LeadStatus] = None,
    team_id: Optional[str] = None,
    agent_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    distributor: LeadDistributor = Depends(get_distributor),
):
    leads = distributor.list_leads(status=status, team_id=team_id, agent_id=agent_id, limit=limit, offset=offset)
    return [LeadResponse.from_lead(lead) for lead in leads]


@router.get("/{lead_id}", response_model=LeadResponse)
def get_lead(lead_id: str, distributor: LeadDistributor = Depends(get_distributor)):
    return LeadResponse.from_lead(distributor.get_lead(lead_id))


@router.get("/{lead_id}/events", response_model=List[LeadEventResponse])
def lead_events(lead_id: str, distributor: LeadDistributor = Depends(get_distributor)):
    return [LeadEventResponse.from_event(e) for e in distributor.lead_history(lead_id)]


@router.post("/{lead_id}/accept", response_model=LeadResponse)
def accept_lead(lead_id: str, body: AgentActionRequest, distributor: LeadDistributor = Depends(get_distributor)):
    return LeadResponse.from_lead(distributor.accept(lead_id, body.agent_id))


@router.post("/{lead_id}/reject", response_model=DistributionResponse)
def reject_lead(lead_id: str, body: AgentActionRequest, distributor: LeadDistributor = Depends(get_distributor)):
    """Decline a reservation; the response shows where the lead went next."""
    return DistributionResponse.from_result(distributor.reject(lead_id, body.agent_id))


@router.post("/{lead_id}/assign", response_model=ReservationResponse, dependencies=[Depends(verify_admin)])
def assign_lead(lead_id: str, body: AssignRequest, distributor: LeadDistributor = Depends(get_distributor)):
    """Admin override: reserve the lead for a specific agent."""
    ttl = timedelta(minutes=body.ttl_minutes) if body.ttl_minutes else None
    reservation = distributor.manual_assign(lead_id, body.agent_id, ttl=ttl)
    return ReservationResponse.from_reservation(reservation)


@router.post("/{lead_id}/claim", response_model=ReservationResponse)
def claim_lead(lead_id: str, body: AgentActionRequest, distributor: LeadDistributor = Depends(get_distributor)):
    """Take a lead from the open pool."""
    return ReservationResponse.from_reservation(distributor.claim(lead_id, body.agent_id))


@router.post("/{lead_id}/complete", response_model=LeadResponse)
def complete_lead(lead_id: str, distributor: LeadDistributor = Depends(get_distributor)):
    return LeadResponse.from_lead(distributor.complete(lead_id))


@router.post("/{lead_id}/contact", response_model=LeadResponse)
def record_contact(
    lead_id: str,
    body: Optional[ContactRequest] = None,
    distributor: LeadDistributor = Depends(get_distributor),
):
    """Record client contact reported by the CRM."""
    at = body.at if body else None
    return LeadResponse.from_lead(distributor.record_contact(lead_id, at))
