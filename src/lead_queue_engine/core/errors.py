"""Error taxonomy for the lead queue engine.

Race outcomes (``AlreadyReserved``, ``AlreadyResolved``) are expected results
of concurrent callers competing for the same lead. Callers should treat them
as "lead taken / already handled", not as failures. ``StorageFault`` is the
only fatal class and is always safe to retry.
"""

from typing import Optional


class LeadQueueError(Exception):
    """Base class for lead queue errors."""

    code = "lead_queue_error"


class LeadNotFound(LeadQueueError):
    code = "lead_not_found"

    def __init__(self, lead_id: str):
        super().__init__(f"Lead {lead_id} not found")
        self.lead_id = lead_id


class AgentNotFound(LeadQueueError):
    code = "agent_not_found"

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} is not in the queue")
        self.agent_id = agent_id


class AlreadyReserved(LeadQueueError):
    """Another agent holds a live reservation on the lead."""

    code = "already_reserved"

    def __init__(self, lead_id: str, holder: Optional[str] = None):
        super().__init__(f"Lead {lead_id} is already reserved")
        self.lead_id = lead_id
        self.holder = holder


class AlreadyResolved(LeadQueueError):
    """The lead is no longer in the state the caller expected."""

    code = "already_resolved"

    def __init__(self, lead_id: str, status=None):
        label = status.value if status is not None else "unknown"
        super().__init__(f"Lead {lead_id} was already resolved (status {label})")
        self.lead_id = lead_id
        self.status = status


class AlreadyExpired(AlreadyResolved):
    """The reservation lapsed before the caller's action landed."""

    code = "already_expired"


class InvalidTransition(LeadQueueError):
    code = "invalid_transition"

    def __init__(self, lead_id: str, from_status, to_status):
        super().__init__(
            f"Lead {lead_id}: cannot move from {from_status.value} to {to_status.value}"
        )
        self.lead_id = lead_id
        self.from_status = from_status
        self.to_status = to_status


class LedgerIntegrityFault(LeadQueueError):
    """Cached score no longer matches the ledger sum."""

    code = "ledger_integrity_fault"

    def __init__(self, agent_id: str, cached: int, ledger: int):
        super().__init__(
            f"Agent {agent_id}: cached score {cached} != ledger sum {ledger}"
        )
        self.agent_id = agent_id
        self.cached = cached
        self.ledger = ledger


class StorageFault(LeadQueueError):
    """Persistence failure. Always retryable."""

    code = "storage_fault"
