# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Data models for reputation, stake and consistency scoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


def clamp01(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, value))


class StakeStatus(StrEnum):
    """Lifecycle of an organization's stake.

    Transitions only leave ACTIVE; SLASHED and WITHDRAWN are terminal.
    """

    ACTIVE = "active"
    SLASHED = "slashed"
    WITHDRAWN = "withdrawn"


@dataclass
class OrganizationReputation:
    """Reputation state of one organization."""

    org_id: str
    base_reputation: float = 0.5
    stake_amount: float = 0.0
    stake_status: StakeStatus = StakeStatus.ACTIVE
    consistency_score: float = 0.5
    age_score: float = 0.0
    volume_score: float = 0.0
    contribution_count: int = 0
    flagged_count: int = 0
    slash_reason: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_updated: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.base_reputation = clamp01(self.base_reputation)
        self.consistency_score = clamp01(self.consistency_score)
        self.age_score = clamp01(self.age_score)
        self.volume_score = clamp01(self.volume_score)

    @property
    def has_active_stake(self) -> bool:
        return self.stake_status == StakeStatus.ACTIVE and self.stake_amount > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "org_id": self.org_id,
            "base_reputation": self.base_reputation,
            "stake_amount": self.stake_amount,
            "stake_status": self.stake_status.value,
            "consistency_score": self.consistency_score,
            "age_score": self.age_score,
            "volume_score": self.volume_score,
            "contribution_count": self.contribution_count,
            "flagged_count": self.flagged_count,
            "slash_reason": self.slash_reason,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrganizationReputation:
        """Create from dictionary."""
        return cls(
            org_id=data["org_id"],
            base_reputation=data.get("base_reputation", 0.5),
            stake_amount=data.get("stake_amount", 0.0),
            stake_status=StakeStatus(data.get("stake_status", StakeStatus.ACTIVE)),
            consistency_score=data.get("consistency_score", 0.5),
            age_score=data.get("age_score", 0.0),
            volume_score=data.get("volume_score", 0.0),
            contribution_count=data.get("contribution_count", 0),
            flagged_count=data.get("flagged_count", 0),
            slash_reason=data.get("slash_reason"),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _utcnow(),
            last_updated=datetime.fromisoformat(data["last_updated"]) if data.get("last_updated") else _utcnow(),
        )


@dataclass
class WeightFactors:
    """The three factors a contribution weight is built from."""

    base_reputation: float
    stake_multiplier: float
    consistency_bonus: float

    def to_dict(self) -> dict[str, float]:
        return {
            "base_reputation": self.base_reputation,
            "stake_multiplier": self.stake_multiplier,
            "consistency_bonus": self.consistency_bonus,
        }


@dataclass
class ContributionWeight:
    """Influence of an organization on the next consensus."""

    org_id: str
    weight: float
    factors: WeightFactors
    has_stake: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "weight": self.weight,
            "factors": self.factors.to_dict(),
            "has_stake": self.has_stake,
        }


@dataclass(frozen=True)
class ContributionRecord:
    """One organization's report for one rule in one calibration round.

    Immutable once written. Deviation and consistency are derived.
    """

    org_id: str
    rule_id: str
    contributed_fp_rate: float
    consensus_fp_rate: float
    event_count: int
    timestamp: datetime = field(default_factory=_utcnow)
    round_id: str | None = None

    @property
    def deviation(self) -> float:
        return abs(self.contributed_fp_rate - self.consensus_fp_rate)

    @property
    def consistency(self) -> float:
        return 1.0 - min(self.deviation, 1.0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "org_id": self.org_id,
            "rule_id": self.rule_id,
            "contributed_fp_rate": self.contributed_fp_rate,
            "consensus_fp_rate": self.consensus_fp_rate,
            "event_count": self.event_count,
            "timestamp": self.timestamp.isoformat(),
            "round_id": self.round_id,
            "deviation": self.deviation,
            "consistency": self.consistency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContributionRecord:
        """Create from dictionary. Derived fields are ignored."""
        return cls(
            org_id=data["org_id"],
            rule_id=data["rule_id"],
            contributed_fp_rate=data["contributed_fp_rate"],
            consensus_fp_rate=data["consensus_fp_rate"],
            event_count=data.get("event_count", 0),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else _utcnow(),
            round_id=data.get("round_id"),
        )


@dataclass
class ConsistencyMetrics:
    """Diagnostics reported alongside a consistency score."""

    mean_deviation: float = 0.0
    stddev_deviation: float = 0.0
    outlier_count: int = 0
    rules_contributed: int = 0
    newest_contribution_age_days: float | None = None
    oldest_contribution_age_days: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mean_deviation": self.mean_deviation,
            "stddev_deviation": self.stddev_deviation,
            "outlier_count": self.outlier_count,
            "rules_contributed": self.rules_contributed,
            "newest_contribution_age_days": self.newest_contribution_age_days,
            "oldest_contribution_age_days": self.oldest_contribution_age_days,
        }


@dataclass
class ConsistencyScoreResult:
    """Consistency score with the evidence behind it."""

    org_id: str
    score: float
    contributions_considered: int
    has_minimum_data: bool
    metrics: ConsistencyMetrics = field(default_factory=ConsistencyMetrics)
    reason: str | None = None
    calculated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "score": self.score,
            "contributions_considered": self.contributions_considered,
            "has_minimum_data": self.has_minimum_data,
            "metrics": self.metrics.to_dict(),
            "reason": self.reason,
            "calculated_at": self.calculated_at.isoformat(),
        }
