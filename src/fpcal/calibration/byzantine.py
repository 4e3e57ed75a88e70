# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Byzantine filtering and weighted consensus for FP-rate contributions.

Filter stages, each applied to the survivors of the previous one:

0. Missing weight        -> ``insufficient_data``
1. Minimum reputation    -> ``below_minimum_rep``  (base reputation < 0.1)
2. Stake requirement     -> ``no_stake``           (off by default)
3. Z-score outliers      -> ``outlier``            (only with >= 5 survivors)
4. Reputation percentile -> ``low_reputation``     (bottom 20% by weight)

Stage 4 uses the weight at index ``floor(n * percentile)`` of the sorted
survivors as a cutoff and excludes only weights strictly below it, so ties
at the cutoff stay and never more than the configured fraction is removed.

Everything here is synchronous and operates on an in-memory snapshot.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ..core.config import TrustSettings
from ..reputation.models import ContributionWeight
from .models import (
    CalibrationConfidence,
    ConfidenceCategory,
    ConfidenceFactors,
    FilteredContributor,
    FilterReason,
    FilterResult,
    FilterStatistics,
    RawContribution,
    TrustedContributor,
)

logger = logging.getLogger(__name__)

# Confidence factor saturation points and weights
CONTRIBUTOR_SATURATION = 10
EVENT_SATURATION = 100
CONFIDENCE_WEIGHTS = {
    "contributor_count": 0.3,
    "agreement": 0.3,
    "event_volume": 0.2,
    "reputation": 0.2,
}
MIN_TRUSTED_FOR_CONFIDENCE = 3
# Spread below this is rounding noise; Z-scores are 0
MIN_STDDEV = 1e-12
HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5

WEAK_FACTOR_REASONS = {
    "contributor_count": "Few trusted contributors",
    "agreement": "High variance in FP rates",
    "event_volume": "Insufficient event data",
    "reputation": "Low reputation scores",
}


@dataclass(frozen=True)
class ByzantineFilterConfig:
    min_reputation: float = 0.1
    require_stake: bool = False
    z_score_threshold: float = 3.0
    min_contributors_for_outlier_filter: int = 5
    percentile: float = 0.2

    @classmethod
    def from_settings(cls, settings: TrustSettings) -> ByzantineFilterConfig:
        return cls(
            min_reputation=settings.min_reputation,
            require_stake=settings.require_stake,
            z_score_threshold=settings.outlier_z_threshold,
            min_contributors_for_outlier_filter=settings.min_contributors_for_outlier_filter,
            percentile=settings.byzantine_filter_percentile,
        )


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _pstdev(values: Sequence[float], mean: float) -> float:
    if not values:
        return 0.0
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def _median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


class ByzantineFilter:
    """Separates trustworthy contributions from Sybil and dishonest ones."""

    def __init__(self, config: ByzantineFilterConfig | None = None):
        self.config = config or ByzantineFilterConfig()

    def filter_contributors(
        self,
        contributions: Sequence[RawContribution],
        weights: Mapping[str, ContributionWeight | None],
    ) -> FilterResult:
        cfg = self.config
        filtered: list[FilteredContributor] = []
        survivors: list[tuple[RawContribution, ContributionWeight]] = []

        # Stages 0-2: per-contributor eligibility
        for contrib in contributions:
            weight = weights.get(contrib.org_id)
            if weight is None:
                filtered.append(self._excluded(contrib, 0.0, FilterReason.INSUFFICIENT_DATA, "No reputation weight found"))
            elif weight.factors.base_reputation < cfg.min_reputation:
                filtered.append(
                    self._excluded(
                        contrib,
                        weight.weight,
                        FilterReason.BELOW_MINIMUM_REP,
                        f"Base reputation {weight.factors.base_reputation:.3f} below minimum {cfg.min_reputation}",
                    )
                )
            elif cfg.require_stake and not weight.has_stake:
                filtered.append(self._excluded(contrib, weight.weight, FilterReason.NO_STAKE, "No economic stake pledged"))
            else:
                survivors.append((contrib, weight))

        eligible_rates = [c.fp_rate for c, _ in survivors]
        mean_rate = _mean(eligible_rates)
        std_rate = _pstdev(eligible_rates, mean_rate)

        # Stage 3: statistical outliers
        scored: list[tuple[RawContribution, ContributionWeight, float]] = []
        run_outlier_stage = len(survivors) >= cfg.min_contributors_for_outlier_filter
        for contrib, weight in survivors:
            z = (contrib.fp_rate - mean_rate) / std_rate if std_rate > MIN_STDDEV else 0.0
            if run_outlier_stage and abs(z) > cfg.z_score_threshold:
                filtered.append(
                    self._excluded(
                        contrib,
                        weight.weight,
                        FilterReason.OUTLIER,
                        f"Z-score {z:.3f} exceeds threshold {cfg.z_score_threshold}",
                    )
                )
            else:
                scored.append((contrib, weight, z))

        # Stage 4: reputation percentile
        cutoff = 0.0
        trusted: list[TrustedContributor] = []
        if scored:
            ordered = sorted(w.weight for _, w, _ in scored)
            index = min(math.floor(len(ordered) * cfg.percentile), len(ordered) - 1)
            cutoff = ordered[index]
        for contrib, weight, z in scored:
            if weight.weight < cutoff:
                filtered.append(
                    self._excluded(
                        contrib,
                        weight.weight,
                        FilterReason.LOW_REPUTATION,
                        f"Weight {weight.weight:.3f} below bottom {cfg.percentile:.0%} cutoff {cutoff:.3f}",
                    )
                )
            else:
                trusted.append(
                    TrustedContributor(
                        org_id=contrib.org_id,
                        fp_rate=contrib.fp_rate,
                        event_count=contrib.event_count,
                        weight=weight.weight,
                        z_score=z,
                        factors=weight.factors,
                    )
                )

        trusted_rates = [t.fp_rate for t in trusted]
        trusted_mean = _mean(trusted_rates)
        statistics = FilterStatistics(
            mean_fp_rate=mean_rate,
            stddev_fp_rate=std_rate,
            median_fp_rate=_median(eligible_rates),
            trusted_mean_fp_rate=trusted_mean,
            trusted_stddev_fp_rate=_pstdev(trusted_rates, trusted_mean),
            mean_weight=_mean([w.weight for _, w in survivors]),
            weight_cutoff=cutoff,
            outlier_count=sum(1 for f in filtered if f.reason == FilterReason.OUTLIER),
            reputation_filtered_count=sum(1 for f in filtered if f.reason == FilterReason.LOW_REPUTATION),
        )

        result = FilterResult(
            trusted=trusted,
            filtered=filtered,
            statistics=statistics,
            total_contributors=len(contributions),
        )
        if filtered:
            logger.info(
                f"Filtered {len(filtered)}/{len(contributions)} contributors "
                f"({statistics.outlier_count} outliers, {statistics.reputation_filtered_count} low reputation)"
            )
        return result

    def calculate_weighted_consensus(self, trusted: Sequence[TrustedContributor]) -> float:
        """Weighted mean FP rate; 0.0 when nothing is trusted.

        When every trusted rate is the same that rate is returned as is,
        without the rounding the weighted sum would introduce.
        """
        if not trusted:
            return 0.0
        rates = {t.fp_rate for t in trusted}
        if len(rates) == 1:
            return rates.pop()
        total_weight = sum(t.weight for t in trusted)
        if total_weight <= 0:
            return _mean([t.fp_rate for t in trusted])
        return sum(t.fp_rate * t.weight for t in trusted) / total_weight

    def calculate_confidence(
        self,
        trusted: Sequence[TrustedContributor],
        statistics: FilterStatistics | None = None,
    ) -> CalibrationConfidence:
        """Score how far the consensus over ``trusted`` can be relied on."""
        count = len(trusted)
        rates = [t.fp_rate for t in trusted]
        mean = statistics.trusted_mean_fp_rate if statistics is not None else _mean(rates)
        std = statistics.trusted_stddev_fp_rate if statistics is not None else _pstdev(rates, mean)

        if mean > 0:
            agreement = max(0.0, 1.0 - std / mean)
        else:
            agreement = 1.0 if std == 0 else 0.0

        factors = ConfidenceFactors(
            contributor_count=min(count / CONTRIBUTOR_SATURATION, 1.0),
            agreement=agreement,
            event_volume=min(sum(t.event_count for t in trusted) / EVENT_SATURATION, 1.0),
            reputation=_mean([min(t.weight, 1.0) for t in trusted]),
        )
        factor_values = factors.to_dict()
        level = sum(factor_values[name] * w for name, w in CONFIDENCE_WEIGHTS.items())

        if count < MIN_TRUSTED_FOR_CONFIDENCE:
            category = ConfidenceCategory.INSUFFICIENT
            reason = f"Only {count} trusted contributors (minimum {MIN_TRUSTED_FOR_CONFIDENCE})"
        elif level >= HIGH_CONFIDENCE:
            category = ConfidenceCategory.HIGH
            reason = None
        else:
            category = ConfidenceCategory.MEDIUM if level >= MEDIUM_CONFIDENCE else ConfidenceCategory.LOW
            weakest = min(factor_values, key=factor_values.__getitem__)
            reason = WEAK_FACTOR_REASONS[weakest]

        return CalibrationConfidence(level=level, category=category, factors=factors, reason=reason)

    @staticmethod
    def _excluded(
        contrib: RawContribution,
        weight: float,
        reason: FilterReason,
        detail: str,
    ) -> FilteredContributor:
        return FilteredContributor(
            org_id=contrib.org_id,
            fp_rate=contrib.fp_rate,
            weight=weight,
            reason=reason,
            detail=detail,
        )
