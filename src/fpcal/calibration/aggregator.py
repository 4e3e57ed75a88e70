# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Calibration rounds: raw reports in, consensus FP rate out.

One round for one rule:

1. Take the rule's pending raw contributions from the ``ContributionSource``;
   each report is consumed by exactly one round.
2. Fetch every contributor's weight concurrently.
3. Filter, compute consensus and confidence (synchronous, on the snapshot).
4. Store the ``CalibrationResult`` and one ``ContributionRecord`` per contributor.
5. Schedule consistency updates for the contributors in the background.

Step 5 does not delay the result; its failures are logged and do not affect
the stored result. ``wait_for_pending_updates()`` drains it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from ..core.logging import correlation_context
from ..reputation.engine import ReputationEngine
from ..reputation.models import ContributionRecord
from .byzantine import ByzantineFilter
from .models import (
    CalibrationResult,
    FilterReason,
    FilterResult,
    FilterStatistics,
    FilterSummary,
    RawContribution,
)

if TYPE_CHECKING:
    from ..storage.base import CalibrationResultStore, ContributionSource, ContributionStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


class CalibrationAggregator:
    """Runs calibration rounds and feeds the outcome back into reputation."""

    def __init__(
        self,
        source: ContributionSource,
        engine: ReputationEngine,
        contributions: ContributionStore,
        results: CalibrationResultStore,
        byzantine_filter: ByzantineFilter | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.source = source
        self.engine = engine
        self.contributions = contributions
        self.results = results
        self.filter = byzantine_filter or ByzantineFilter()
        self.max_concurrency = max(1, max_concurrency)
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_update_count(self) -> int:
        return len(self._pending)

    async def calibrate(self, rule_id: str) -> CalibrationResult:
        """Run one calibration round for ``rule_id``."""
        round_id = str(uuid.uuid4())
        with correlation_context(round_id):
            raw = await self.source.take_contributions(rule_id, round_id)
            if not raw:
                # Not stored; the last consensus for the rule stays current
                logger.info(f"No pending contributions for rule {rule_id}")
                return self._assemble(rule_id, round_id, raw, FilterResult([], [], FilterStatistics(), 0))

            weights = await asyncio.gather(
                *(self.engine.calculate_contribution_weight(c.org_id) for c in raw)
            )
            filter_result = self.filter.filter_contributors(raw, {w.org_id: w for w in weights})
            result = self._assemble(rule_id, round_id, raw, filter_result)
            await self.results.save_result(result)

            records = [
                ContributionRecord(
                    org_id=c.org_id,
                    rule_id=rule_id,
                    contributed_fp_rate=c.fp_rate,
                    consensus_fp_rate=result.consensus_fp_rate,
                    event_count=c.event_count,
                    timestamp=result.calculated_at,
                    round_id=round_id,
                )
                for c in raw
            ]
            for record in records:
                await self.contributions.add_record(record)

            flagged = {f.org_id for f in filter_result.filtered_by(FilterReason.OUTLIER)}
            self._schedule_updates([r.org_id for r in records], flagged)

            logger.info(
                f"Calibrated {rule_id}: consensus={result.consensus_fp_rate:.4f} "
                f"confidence={result.confidence.category} "
                f"trusted={result.trusted_contributor_count}/{result.total_contributor_count}"
            )
            return result

    async def get_calibration_result(self, rule_id: str) -> CalibrationResult | None:
        """Latest stored result for ``rule_id``."""
        return await self.results.get_latest_result(rule_id)

    async def calibrate_rules(self, rule_ids: Iterable[str]) -> dict[str, CalibrationResult]:
        """Calibrate several rules in parallel, at most ``max_concurrency`` at a time."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(rule_id: str) -> CalibrationResult:
            async with semaphore:
                return await self.calibrate(rule_id)

        ids = list(dict.fromkeys(rule_ids))
        results = await asyncio.gather(*(run(rule_id) for rule_id in ids))
        return dict(zip(ids, results, strict=True))

    async def calibrate_all(self) -> dict[str, CalibrationResult]:
        """Calibrate every rule with pending contributions."""
        return await self.calibrate_rules(await self.source.list_rule_ids())

    async def wait_for_pending_updates(self) -> None:
        """Wait until every scheduled consistency update has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _assemble(
        self,
        rule_id: str,
        round_id: str,
        raw: Sequence[RawContribution],
        filter_result: FilterResult,
    ) -> CalibrationResult:
        trusted = filter_result.trusted
        confidence = self.filter.calculate_confidence(trusted, filter_result.statistics)
        if not raw:
            confidence.reason = "No contributions"
        return CalibrationResult(
            rule_id=rule_id,
            round_id=round_id,
            consensus_fp_rate=self.filter.calculate_weighted_consensus(trusted),
            trusted_contributor_count=len(trusted),
            total_contributor_count=len(raw),
            total_event_count=sum(t.event_count for t in trusted),
            confidence=confidence,
            filter_summary=FilterSummary.from_filter_result(filter_result),
        )

    def _schedule_updates(self, org_ids: Sequence[str], flagged: set[str]) -> None:
        task = asyncio.create_task(self._update_consistency(org_ids, flagged))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _update_consistency(self, org_ids: Sequence[str], flagged: set[str]) -> None:
        window = timedelta(days=self.engine.calculator.config.max_age_days)
        since = datetime.now(UTC) - window
        for org_id in org_ids:
            try:
                records = await self.contributions.get_records_for_org(org_id, since=since)
                await self.engine.update_consistency_score(org_id, records, flagged=org_id in flagged)
            except Exception:
                logger.exception(f"Consistency update failed for {org_id}")
