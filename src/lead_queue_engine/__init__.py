"""Score-ranked lead distribution with exclusive, time-boxed reservations."""

__version__ = "1.0.0"
