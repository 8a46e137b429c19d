"""Tunable queue configuration: penalties, reservation windows, sweep timing."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional, Any

from ..storage.models import DistributionMode

logger = logging.getLogger(__name__)


@dataclass
class QueueConfig:
    """Configurable distribution and scoring parameters."""

    # Reservation window (per mode overrides fall back to the default)
    reservation_ttl_minutes: int = 10
    ttl_minutes_by_mode: Dict[str, int] = field(default_factory=dict)
    default_mode: DistributionMode = DistributionMode.ROUND_ROBIN

    # Score ledger points
    accept_points: int = 5
    fast_response_points: int = 5
    fast_response_minutes: int = 5
    rejected_penalty: int = 5
    expired_penalty: int = 8  # Silent non-response costs more than declining

    # Sweep
    sweep_interval_seconds: int = 30
    redistribute_available_on_sweep: bool = True
    abandon_after_hours: Optional[int] = None  # None = AVAILABLE leads never abandon

    # Dashboards
    stale_after_days: int = 3

    # Capacity (None = unlimited simultaneous leads per agent)
    max_active_leads: Optional[int] = None

    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.expired_penalty <= self.rejected_penalty:
            logger.warning(
                f"expired_penalty ({self.expired_penalty}) should exceed "
                f"rejected_penalty ({self.rejected_penalty})"
            )

    def ttl_for(self, mode: DistributionMode) -> timedelta:
        """Reservation window for leads distributed under a mode."""
        minutes = self.ttl_minutes_by_mode.get(mode.value, self.reservation_ttl_minutes)
        return timedelta(minutes=minutes)

    @property
    def fast_response_window(self) -> timedelta:
        return timedelta(minutes=self.fast_response_minutes)

    @property
    def abandon_after(self) -> Optional[timedelta]:
        if self.abandon_after_hours is None:
            return None
        return timedelta(hours=self.abandon_after_hours)

    @property
    def stale_after(self) -> timedelta:
        return timedelta(days=self.stale_after_days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservation_ttl_minutes": self.reservation_ttl_minutes,
            "ttl_minutes_by_mode": self.ttl_minutes_by_mode,
            "default_mode": self.default_mode.value,
            "accept_points": self.accept_points,
            "fast_response_points": self.fast_response_points,
            "fast_response_minutes": self.fast_response_minutes,
            "rejected_penalty": self.rejected_penalty,
            "expired_penalty": self.expired_penalty,
            "sweep_interval_seconds": self.sweep_interval_seconds,
            "redistribute_available_on_sweep": self.redistribute_available_on_sweep,
            "abandon_after_hours": self.abandon_after_hours,
            "stale_after_days": self.stale_after_days,
            "max_active_leads": self.max_active_leads,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueConfig":
        return cls(
            reservation_ttl_minutes=data.get("reservation_ttl_minutes", 10),
            ttl_minutes_by_mode=data.get("ttl_minutes_by_mode", {}),
            default_mode=DistributionMode(data.get("default_mode", "ROUND_ROBIN")),
            accept_points=data.get("accept_points", 5),
            fast_response_points=data.get("fast_response_points", 5),
            fast_response_minutes=data.get("fast_response_minutes", 5),
            rejected_penalty=data.get("rejected_penalty", 5),
            expired_penalty=data.get("expired_penalty", 8),
            sweep_interval_seconds=data.get("sweep_interval_seconds", 30),
            redistribute_available_on_sweep=data.get("redistribute_available_on_sweep", True),
            abandon_after_hours=data.get("abandon_after_hours"),
            stale_after_days=data.get("stale_after_days", 3),
            max_active_leads=data.get("max_active_leads"),
        )


class QueueConfigManager:
    """Load and persist queue configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager."""
        self.config_path = config_path or Path.home() / ".lead-queue-engine" / "queue_config.json"
        self.config = self._load_config()

    def _load_config(self) -> QueueConfig:
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    return QueueConfig.from_dict(json.load(f))
            except (OSError, ValueError) as e:
                logger.error(f"Error loading queue config: {e}")

        return QueueConfig()

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(self.config.to_dict(), f, indent=2)

    def update(self, **changes) -> QueueConfig:
        """Update fields by name and persist."""
        data = self.config.to_dict()
        for key, value in changes.items():
            if key not in data or key == "updated_at":
                raise KeyError(f"Unknown config field: {key}")
            data[key] = value.value if isinstance(value, DistributionMode) else value
        self.config = QueueConfig.from_dict(data)
        self.config.updated_at = datetime.now()
        self.save_config()
        return self.config

    def set_penalties(self, rejected: int, expired: int):
        """Update the REJECTED/EXPIRED penalty magnitudes."""
        self.update(rejected_penalty=rejected, expired_penalty=expired)
