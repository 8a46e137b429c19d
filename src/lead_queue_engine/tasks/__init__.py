"""Background tasks."""

from .sweeper import ExpirySweeper

__all__ = ["ExpirySweeper"]
