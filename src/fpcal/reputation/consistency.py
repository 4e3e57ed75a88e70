# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Consistency scoring: how closely an organization tracks network consensus.

Per contribution::

    consistency_i = 1 - min(|contributed_i - consensus_i|, 1)
    weight_i      = exp(-decay_rate * age_days_i)

The score is the weight-averaged consistency over contributions inside the
age window. Organizations with fewer than ``min_contributions`` usable
contributions get the neutral score 0.5.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from ..core.config import TrustSettings
from .models import ConsistencyMetrics, ConsistencyScoreResult, ContributionRecord, clamp01

NEUTRAL_SCORE = 0.5
SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class ConsistencyConfig:
    decay_rate: float = 0.01  # ~70-day half-life
    max_age_days: int = 180
    min_contributions: int = 3
    outlier_threshold: float = 0.3
    min_event_count: int = 1
    exclude_outliers: bool = False

    @classmethod
    def from_settings(cls, settings: TrustSettings) -> ConsistencyConfig:
        return cls(
            decay_rate=settings.consistency_decay_rate,
            max_age_days=settings.consistency_max_age_days,
            min_contributions=settings.consistency_min_contributions,
            outlier_threshold=settings.consistency_outlier_threshold,
            min_event_count=settings.consistency_min_event_count,
            exclude_outliers=settings.consistency_exclude_outliers,
        )


class ConsistencyScoreCalculator:
    """Pure, stateless scoring over a list of contribution records."""

    def __init__(
        self,
        config: ConsistencyConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or ConsistencyConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    def calculate(self, org_id: str, records: Sequence[ContributionRecord]) -> ConsistencyScoreResult:
        now = self._clock()
        usable = self._usable(records, now)

        if len(usable) < self.config.min_contributions:
            return ConsistencyScoreResult(
                org_id=org_id,
                score=NEUTRAL_SCORE,
                contributions_considered=len(usable),
                has_minimum_data=False,
                metrics=self._metrics(usable, now),
                reason=(
                    f"Only {len(usable)} contributions found "
                    f"(minimum {self.config.min_contributions} required)"
                ),
                calculated_at=now,
            )

        scored = usable
        if self.config.exclude_outliers:
            kept = [r for r in usable if not self.is_outlier(r)]
            # Never drop everything
            scored = kept or usable

        return ConsistencyScoreResult(
            org_id=org_id,
            score=clamp01(self._weighted_score(scored, now)),
            contributions_considered=len(scored),
            has_minimum_data=True,
            metrics=self._metrics(usable, now),
            calculated_at=now,
        )

    def is_outlier(self, record: ContributionRecord) -> bool:
        return record.deviation > self.config.outlier_threshold

    def time_weight(self, age_days: float) -> float:
        return math.exp(-self.config.decay_rate * max(age_days, 0.0))

    def _usable(self, records: Sequence[ContributionRecord], now: datetime) -> list[ContributionRecord]:
        cutoff = now - timedelta(days=self.config.max_age_days)
        return [
            r for r in records
            if r.timestamp >= cutoff and r.event_count >= self.config.min_event_count
        ]

    def _weighted_score(self, records: Sequence[ContributionRecord], now: datetime) -> float:
        total_weight = 0.0
        weighted = 0.0
        for record in records:
            w = self.time_weight(_age_days(record.timestamp, now))
            total_weight += w
            weighted += w * record.consistency
        if total_weight == 0:
            return NEUTRAL_SCORE
        return weighted / total_weight

    def _metrics(self, records: Sequence[ContributionRecord], now: datetime) -> ConsistencyMetrics:
        if not records:
            return ConsistencyMetrics()

        deviations = [r.deviation for r in records]
        mean = sum(deviations) / len(deviations)
        variance = sum((d - mean) ** 2 for d in deviations) / len(deviations)
        ages = [_age_days(r.timestamp, now) for r in records]

        return ConsistencyMetrics(
            mean_deviation=mean,
            stddev_deviation=math.sqrt(variance),
            outlier_count=sum(1 for r in records if self.is_outlier(r)),
            rules_contributed=len({r.rule_id for r in records}),
            newest_contribution_age_days=min(ages),
            oldest_contribution_age_days=max(ages),
        )


def _age_days(timestamp: datetime, now: datetime) -> float:
    return (now - timestamp).total_seconds() / SECONDS_PER_DAY
