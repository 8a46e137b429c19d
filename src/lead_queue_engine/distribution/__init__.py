"""Lead distribution policies and orchestration."""

from .distributor import DistributionResult, LeadDistributor
from .policies import (
    CapturerFirstPolicy,
    DistributionPolicy,
    ManualPolicy,
    RoundRobinPolicy,
    get_policy,
)

__all__ = [
    "DistributionResult",
    "LeadDistributor",
    "CapturerFirstPolicy",
    "DistributionPolicy",
    "ManualPolicy",
    "RoundRobinPolicy",
    "get_policy",
]
