"""Storage layer for the lead queue."""

from .database import QueueDatabase
from .models import (
    AgentQueueEntry,
    AgentStatus,
    DistributionMode,
    DistributionSettings,
    Lead,
    LeadEvent,
    LeadOffer,
    LeadSource,
    LeadStatus,
    LedgerAction,
    OfferOutcome,
    ScoreLedgerEntry,
)

__all__ = [
    "QueueDatabase",
    "AgentQueueEntry",
    "AgentStatus",
    "DistributionMode",
    "DistributionSettings",
    "Lead",
    "LeadEvent",
    "LeadOffer",
    "LeadSource",
    "LeadStatus",
    "LedgerAction",
    "OfferOutcome",
    "ScoreLedgerEntry",
]
