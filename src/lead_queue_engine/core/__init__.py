"""Configuration and error taxonomy."""

from .config import QueueConfig, QueueConfigManager
from .errors import (
    LeadQueueError,
    LeadNotFound,
    AgentNotFound,
    AlreadyReserved,
    AlreadyResolved,
    AlreadyExpired,
    InvalidTransition,
    LedgerIntegrityFault,
    StorageFault,
)

__all__ = [
    "QueueConfig",
    "QueueConfigManager",
    "LeadQueueError",
    "LeadNotFound",
    "AgentNotFound",
    "AlreadyReserved",
    "AlreadyResolved",
    "AlreadyExpired",
    "InvalidTransition",
    "LedgerIntegrityFault",
    "StorageFault",
]
