"""Lead status notifications."""

from .notifier import LeadStatusChanged, StatusNotifier

__all__ = [
    'LeadStatusChanged',
    'StatusNotifier',
]
