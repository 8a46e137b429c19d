"""Agent routes: queue membership, ranking, scores and history."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...analytics.metrics import MetricsAggregator
from ...distribution.distributor import LeadDistributor
from ..dependencies import get_distributor, get_metrics
from ..middleware.auth import verify_admin
from ..schemas import (
    ERROR_RESPONSES,
    AdjustScoreRequest,
    AgentResponse,
    BonusRequest,
    HistoryResponse,
    JoinQueueRequest,
    LedgerEntryResponse,
    SetScoreRequest,
    StatusRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/agents", tags=["agents"], responses=ERROR_RESPONSES)


def _agent(distributor: LeadDistributor, agent_id: str) -> AgentResponse:
    entry = distributor.roster.get(agent_id)
    return AgentResponse.from_entry(entry, position=distributor.ranking.position_of(agent_id))


@router.post("", response_model=AgentResponse, status_code=201)
def join_queue(body: JoinQueueRequest, distributor: LeadDistributor = Depends(get_distributor)):
    distributor.join_queue(body.agent_id, body.team_id)
    return _agent(distributor, body.agent_id)


@router.get("", response_model=List[AgentResponse])
def ranking(team_id: str = "default", distributor: LeadDistributor = Depends(get_distributor)):
    """ACTIVE agents in rank order."""
    return [AgentResponse.from_entry(e) for e in distributor.ranking.entries(team_id)]


@router.get("/{agent_id}")
def agent_detail(
    agent_id: str,
    days: Optional[int] = Query(None, ge=1, le=365),
    metrics: MetricsAggregator = Depends(get_metrics),
):
    """Standing, workload, leads awaiting reply and stalled follow-ups."""
    return metrics.agent_detail(agent_id, window=days)


@router.put("/{agent_id}/status", response_model=AgentResponse, dependencies=[Depends(verify_admin)])
def set_status(agent_id: str, body: StatusRequest, distributor: LeadDistributor = Depends(get_distributor)):
    distributor.set_status(agent_id, body.status)
    return _agent(distributor, agent_id)


@router.put("/{agent_id}/score", response_model=AgentResponse, dependencies=[Depends(verify_admin)])
def set_score(agent_id: str, body: SetScoreRequest, distributor: LeadDistributor = Depends(get_distributor)):
    """Set an absolute score; recorded as one adjustment entry."""
    distributor.set_score(agent_id, body.score, body.reason)
    return _agent(distributor, agent_id)


@router.post("/{agent_id}/score", response_model=AgentResponse, dependencies=[Depends(verify_admin)])
def adjust_score(agent_id: str, body: AdjustScoreRequest, distributor: LeadDistributor = Depends(get_distributor)):
    """Apply a relative score adjustment."""
    distributor.adjust_score(agent_id, body.points, body.description)
    return _agent(distributor, agent_id)


@router.post("/{agent_id}/bonus", response_model=AgentResponse, dependencies=[Depends(verify_admin)])
def grant_bonus(agent_id: str, body: BonusRequest, distributor: LeadDistributor = Depends(get_distributor)):
    distributor.grant_bonus_leads(agent_id, body.count)
    return _agent(distributor, agent_id)


@router.get("/{agent_id}/history", response_model=HistoryResponse)
def history(
    agent_id: str,
    limit: int = Query(50, ge=1, le=500),
    cursor: Optional[int] = None,
    distributor: LeadDistributor = Depends(get_distributor),
):
    """Ledger entries newest first; pass ``next_cursor`` back to page."""
    distributor.roster.get(agent_id)
    entries = list(distributor.ledger.history(agent_id, limit=limit, cursor=cursor))
    next_cursor = entries[-1].id if len(entries) == limit else None
    return HistoryResponse(
        agent_id=agent_id,
        entries=[LedgerEntryResponse.from_entry(e) for e in entries],
        next_cursor=next_cursor,
    )
