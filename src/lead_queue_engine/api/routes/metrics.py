"""Dashboard metrics routes."""

from fastapi import APIRouter, Depends, Query

from ...analytics.metrics import SOURCES, MetricsAggregator
from ..dependencies import get_metrics

router = APIRouter(prefix="/v1/metrics", tags=["metrics"])

ALLOWED_DAYS = (7, 30, 90)


def _window(days: int) -> int:
    return days if days in ALLOWED_DAYS else 30


@router.get("/overview")
def overview(
    days: int = 30,
    source: str = "all",
    metrics: MetricsAggregator = Depends(get_metrics),
):
    """Totals and rates for the last 7, 30 or 90 days (anything else means 30)."""
    source = source.lower()
    if source not in SOURCES:
        source = "all"
    return metrics.overview(_window(days), source)


@router.get("/top-agents")
def top_agents(
    days: int = 30,
    limit: int = Query(10, ge=1, le=100),
    team_id: str = "default",
    metrics: MetricsAggregator = Depends(get_metrics),
):
    return {"agents": metrics.top_agents(_window(days), limit=limit, team_id=team_id)}
