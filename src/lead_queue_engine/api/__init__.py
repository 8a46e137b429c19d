"""HTTP API for the lead queue."""

from .main import create_app

__all__ = ["create_app"]
