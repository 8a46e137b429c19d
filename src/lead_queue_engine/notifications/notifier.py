"""Lead status change notifications.

Every committed lead transition is published as a ``LeadStatusChanged``
event. In-process subscribers (UI push, tests) are called synchronously and
an optional webhook receives the same payload as JSON.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

import requests

from ..storage.models import LeadStatus

logger = logging.getLogger(__name__)


@dataclass
class LeadStatusChanged:
    """A lead moved to a new status."""

    lead_id: str
    new_status: LeadStatus
    agent_id: Optional[str] = None
    previous_status: Optional[LeadStatus] = None
    occurred_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "lead_id": self.lead_id,
            "new_status": self.new_status.value,
            "agent_id": self.agent_id,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "occurred_at": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[LeadStatusChanged], None]


class StatusNotifier:
    """Fan lead status changes out to subscribers and a webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5):
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv("LQE_WEBHOOK_URL")
        self.timeout = timeout
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: LeadStatusChanged):
        """Deliver an event. Delivery failures are logged, never raised."""
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber failed for lead {event.lead_id}: {e}")

        if self.webhook_url:
            self._send_webhook(event)

    def _send_webhook(self, event: LeadStatusChanged):
        payload = {
            "event_type": "lead_status_changed",
            "timestamp": datetime.now().isoformat(),
            "event_data": event.to_dict(),
        }
        try:
            requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Webhook failed: {e}")
