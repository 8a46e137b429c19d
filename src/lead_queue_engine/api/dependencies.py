"""Request dependencies: the shared distributor and metrics instances."""

from pathlib import Path

from fastapi import Request

from ..analytics.metrics import MetricsAggregator
from ..core.config import QueueConfigManager
from ..distribution.distributor import LeadDistributor
from ..notifications.notifier import StatusNotifier
from ..storage.database import QueueDatabase
from .config import settings


def build_distributor() -> LeadDistributor:
    """Assemble a distributor from environment settings."""
    config_path = Path(settings.config_path) if settings.config_path else None
    config = QueueConfigManager(config_path).config
    db = QueueDatabase(Path(settings.db_path))
    return LeadDistributor(db, config, StatusNotifier(webhook_url=settings.webhook_url))


def get_distributor(request: Request) -> LeadDistributor:
    state = request.app.state
    if getattr(state, "distributor", None) is None:
        state.distributor = build_distributor()
    return state.distributor


def get_metrics(request: Request) -> MetricsAggregator:
    state = request.app.state
    if getattr(state, "metrics", None) is None:
        distributor = get_distributor(request)
        state.metrics = MetricsAggregator(distributor.db, distributor.config, distributor.clock)
    return state.metrics
