"""Shared fixtures for lead queue tests."""

import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Keep the API quiet about the missing admin secret
os.environ.setdefault("LQE_ENGINE_ENV", "test")
os.environ.setdefault("LQE_SWEEPER_ENABLED", "false")

from lead_queue_engine.core.config import QueueConfig
from lead_queue_engine.distribution import LeadDistributor
from lead_queue_engine.notifications import StatusNotifier
from lead_queue_engine.storage.database import QueueDatabase


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(temp_data_dir):
    """Queue database in a temp directory."""
    return QueueDatabase(temp_data_dir / "queue.db")


@pytest.fixture
def config():
    return QueueConfig()


@pytest.fixture
def events():
    """Status change events captured from the notifier."""
    return []


@pytest.fixture
def notifier(events):
    notifier = StatusNotifier(webhook_url="")
    notifier.subscribe(events.append)
    return notifier


@pytest.fixture
def distributor(db, config, notifier, clock):
    """Distributor wired to the temp database and the fake clock."""
    return LeadDistributor(db, config, notifier, clock=clock)


@pytest.fixture
def three_agents(distributor):
    """Agents a, b and c with equal scores; ids break the tie."""
    for agent_id in ("agent-a", "agent-b", "agent-c"):
        distributor.join_queue(agent_id)
    return ["agent-a", "agent-b", "agent-c"]
