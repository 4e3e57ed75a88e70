# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Data models for Byzantine filtering and calibration results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from ..reputation.models import WeightFactors


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FilterReason(StrEnum):
    """Why a contributor was excluded from the trusted set."""

    INSUFFICIENT_DATA = "insufficient_data"
    BELOW_MINIMUM_REP = "below_minimum_rep"
    NO_STAKE = "no_stake"
    OUTLIER = "outlier"
    LOW_REPUTATION = "low_reputation"


class ConfidenceCategory(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INSUFFICIENT = "insufficient"


# =============================================================================
# INPUTS
# =============================================================================


@dataclass(frozen=True)
class RawContribution:
    """An FP-rate report for one rule, as handed over by ingestion."""

    org_id: str
    rule_id: str
    fp_rate: float
    event_count: int
    submitted_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "rule_id": self.rule_id,
            "fp_rate": self.fp_rate,
            "event_count": self.event_count,
            "submitted_at": self.submitted_at.isoformat(),
        }


# =============================================================================
# FILTER OUTPUT
# =============================================================================


@dataclass
class TrustedContributor:
    """A contribution that passed every filter stage."""

    org_id: str
    fp_rate: float
    event_count: int
    weight: float
    z_score: float
    factors: WeightFactors

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "fp_rate": self.fp_rate,
            "event_count": self.event_count,
            "weight": self.weight,
            "z_score": self.z_score,
            "factors": self.factors.to_dict(),
        }


@dataclass
class FilteredContributor:
    """A contribution excluded from consensus, with the stage that excluded it."""

    org_id: str
    fp_rate: float
    weight: float
    reason: FilterReason
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "fp_rate": self.fp_rate,
            "weight": self.weight,
            "reason": self.reason.value,
            "detail": self.detail,
        }


@dataclass
class FilterStatistics:
    """Summary statistics of a filtering pass."""

    mean_fp_rate: float = 0.0
    stddev_fp_rate: float = 0.0
    median_fp_rate: float = 0.0
    trusted_mean_fp_rate: float = 0.0
    trusted_stddev_fp_rate: float = 0.0
    mean_weight: float = 0.0
    weight_cutoff: float = 0.0
    outlier_count: int = 0
    reputation_filtered_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mean_fp_rate": self.mean_fp_rate,
            "stddev_fp_rate": self.stddev_fp_rate,
            "median_fp_rate": self.median_fp_rate,
            "trusted_mean_fp_rate": self.trusted_mean_fp_rate,
            "trusted_stddev_fp_rate": self.trusted_stddev_fp_rate,
            "mean_weight": self.mean_weight,
            "weight_cutoff": self.weight_cutoff,
            "outlier_count": self.outlier_count,
            "reputation_filtered_count": self.reputation_filtered_count,
        }


@dataclass
class FilterResult:
    trusted: list[TrustedContributor]
    filtered: list[FilteredContributor]
    statistics: FilterStatistics
    total_contributors: int

    @property
    def trusted_count(self) -> int:
        return len(self.trusted)

    @property
    def filter_rate(self) -> float:
        if self.total_contributors == 0:
            return 0.0
        return 1.0 - self.trusted_count / self.total_contributors

    def filtered_by(self, reason: FilterReason) -> list[FilteredContributor]:
        return [f for f in self.filtered if f.reason == reason]


# =============================================================================
# CONFIDENCE
# =============================================================================


@dataclass
class ConfidenceFactors:
    contributor_count: float
    agreement: float
    event_volume: float
    reputation: float

    def to_dict(self) -> dict[str, float]:
        return {
            "contributor_count": self.contributor_count,
            "agreement": self.agreement,
            "event_volume": self.event_volume,
            "reputation": self.reputation,
        }


@dataclass
class CalibrationConfidence:
    """How far a consensus FP rate can be trusted.

    ``reason`` is set for every category except HIGH.
    """

    level: float
    category: ConfidenceCategory
    factors: ConfidenceFactors
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "category": self.category.value,
            "factors": self.factors.to_dict(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationConfidence:
        return cls(
            level=data["level"],
            category=ConfidenceCategory(data["category"]),
            factors=ConfidenceFactors(**data["factors"]),
            reason=data.get("reason"),
        )


# =============================================================================
# RESULT
# =============================================================================


@dataclass
class FilterSummary:
    """What the Byzantine filter did in one round, for audit."""

    total_contributors: int
    trusted_count: int
    filter_rate: float
    excluded: list[dict[str, Any]] = field(default_factory=list)
    statistics: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_filter_result(cls, result: FilterResult) -> FilterSummary:
        return cls(
            total_contributors=result.total_contributors,
            trusted_count=result.trusted_count,
            filter_rate=result.filter_rate,
            excluded=[
                {"org_id": f.org_id, "reason": f.reason.value, "detail": f.detail}
                for f in result.filtered
            ],
            statistics=result.statistics.to_dict(),
        )

    def reasons_by_org(self) -> dict[str, str]:
        return {entry["org_id"]: entry["reason"] for entry in self.excluded}

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_contributors": self.total_contributors,
            "trusted_count": self.trusted_count,
            "filter_rate": self.filter_rate,
            "excluded": self.excluded,
            "statistics": self.statistics,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilterSummary:
        return cls(
            total_contributors=data["total_contributors"],
            trusted_count=data["trusted_count"],
            filter_rate=data["filter_rate"],
            excluded=data.get("excluded", []),
            statistics=data.get("statistics", {}),
        )


@dataclass
class CalibrationResult:
    """Consensus FP rate for one rule from one calibration round."""

    rule_id: str
    round_id: str
    consensus_fp_rate: float
    trusted_contributor_count: int
    total_contributor_count: int
    total_event_count: int
    confidence: CalibrationConfidence
    filter_summary: FilterSummary
    calculated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "rule_id": self.rule_id,
            "round_id": self.round_id,
            "consensus_fp_rate": self.consensus_fp_rate,
            "trusted_contributor_count": self.trusted_contributor_count,
            "total_contributor_count": self.total_contributor_count,
            "total_event_count": self.total_event_count,
            "confidence": self.confidence.to_dict(),
            "filter_summary": self.filter_summary.to_dict(),
            "calculated_at": self.calculated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationResult:
        """Create from dictionary."""
        return cls(
            rule_id=data["rule_id"],
            round_id=data["round_id"],
            consensus_fp_rate=data["consensus_fp_rate"],
            trusted_contributor_count=data["trusted_contributor_count"],
            total_contributor_count=data["total_contributor_count"],
            total_event_count=data["total_event_count"],
            confidence=CalibrationConfidence.from_dict(data["confidence"]),
            filter_summary=FilterSummary.from_dict(data["filter_summary"]),
            calculated_at=datetime.fromisoformat(data["calculated_at"]) if data.get("calculated_at") else _utcnow(),
        )
