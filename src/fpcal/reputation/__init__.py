"""Reputation: contribution weights, stake and consistency scoring."""

from .consistency import ConsistencyConfig, ConsistencyScoreCalculator
from .engine import ReputationConfig, ReputationEngine
from .models import (
    ConsistencyMetrics,
    ConsistencyScoreResult,
    ContributionRecord,
    ContributionWeight,
    OrganizationReputation,
    StakeStatus,
    WeightFactors,
)

__all__ = [
    "ConsistencyConfig",
    "ConsistencyScoreCalculator",
    "ReputationConfig",
    "ReputationEngine",
    "ConsistencyMetrics",
    "ConsistencyScoreResult",
    "ContributionRecord",
    "ContributionWeight",
    "OrganizationReputation",
    "StakeStatus",
    "WeightFactors",
]
