"""Lead lifecycle and reservations."""

from .reservations import Reservation, ReservationManager, SweepResult
from .state_machine import TRANSITIONS, LeadStateMachine, can_transition

__all__ = [
    "Reservation",
    "ReservationManager",
    "SweepResult",
    "TRANSITIONS",
    "LeadStateMachine",
    "can_transition",
]
