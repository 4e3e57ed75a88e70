# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Reputation engine: contribution weights, stake lifecycle, consistency feedback.

Weight formula::

    weight = base_reputation * (1 + stake_multiplier) * (1 + consistency_bonus)

    stake_multiplier  = min(stake / stake_reference_amount, 1) * stake_multiplier_cap
                        (0 unless stake status is active)
    consistency_bonus = (consistency - 0.5) * 2 * consistency_bonus_cap

Consistency 0.5 is neutral. A perfectly consistent organization gains
``consistency_bonus_cap``; a perfectly inconsistent one loses the same amount.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ..core.config import TrustSettings
from ..core.exceptions import InvariantViolation, ValidationException
from ..core.locking import OrgLockRegistry
from .consistency import ConsistencyScoreCalculator
from .models import (
    ConsistencyScoreResult,
    ContributionRecord,
    ContributionWeight,
    OrganizationReputation,
    StakeStatus,
    WeightFactors,
    clamp01,
)

if TYPE_CHECKING:
    from ..storage.base import ReputationStore

logger = logging.getLogger(__name__)

# Contribution rounds after which the volume score saturates
VOLUME_SATURATION = 100
# Days after which the age score saturates
AGE_SATURATION_DAYS = 365

UPDATABLE_FIELDS = frozenset(OrganizationReputation.__dataclass_fields__) - {"org_id", "stake_status", "created_at"}


@dataclass(frozen=True)
class ReputationConfig:
    new_entrant_reputation: float = 0.1
    stake_reference_amount: float = 1000.0
    stake_multiplier_cap: float = 1.0
    consistency_bonus_cap: float = 0.2
    min_stake_for_participation: float = 1000.0

    @classmethod
    def from_settings(cls, settings: TrustSettings) -> ReputationConfig:
        return cls(
            new_entrant_reputation=settings.new_entrant_reputation,
            stake_reference_amount=settings.stake_reference_amount,
            stake_multiplier_cap=settings.stake_multiplier_cap,
            consistency_bonus_cap=settings.consistency_bonus_cap,
            min_stake_for_participation=settings.min_stake_for_participation,
        )


class ReputationEngine:
    """Owns reputation records and derives contribution weights from them."""

    def __init__(
        self,
        store: ReputationStore,
        config: ReputationConfig | None = None,
        calculator: ConsistencyScoreCalculator | None = None,
        locks: OrgLockRegistry | None = None,
    ):
        self.store = store
        self.config = config or ReputationConfig()
        self.calculator = calculator or ConsistencyScoreCalculator()
        self.locks = locks or OrgLockRegistry()

    # -------------------------------------------------------------------------
    # Weights
    # -------------------------------------------------------------------------

    def stake_multiplier(self, reputation: OrganizationReputation) -> float:
        if reputation.stake_status != StakeStatus.ACTIVE or reputation.stake_amount <= 0:
            return 0.0
        ratio = min(reputation.stake_amount / self.config.stake_reference_amount, 1.0)
        return ratio * self.config.stake_multiplier_cap

    def consistency_bonus(self, consistency_score: float) -> float:
        return (clamp01(consistency_score) - 0.5) * 2 * self.config.consistency_bonus_cap

    def weight_for(self, reputation: OrganizationReputation) -> ContributionWeight:
        """Weight of an existing reputation record."""
        factors = WeightFactors(
            base_reputation=reputation.base_reputation,
            stake_multiplier=self.stake_multiplier(reputation),
            consistency_bonus=self.consistency_bonus(reputation.consistency_score),
        )
        weight = factors.base_reputation * (1 + factors.stake_multiplier) * (1 + factors.consistency_bonus)
        return ContributionWeight(
            org_id=reputation.org_id,
            weight=max(weight, 0.0),
            factors=factors,
            has_stake=factors.stake_multiplier > 0,
        )

    async def calculate_contribution_weight(self, org_id: str) -> ContributionWeight:
        """Current weight of ``org_id``; unknown organizations get the new-entrant weight."""
        reputation = await self.store.get_reputation(org_id)
        if reputation is None:
            base = self.config.new_entrant_reputation
            return ContributionWeight(
                org_id=org_id,
                weight=base,
                factors=WeightFactors(base_reputation=base, stake_multiplier=0.0, consistency_bonus=0.0),
            )
        return self.weight_for(reputation)

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def get_reputation(self, org_id: str) -> OrganizationReputation | None:
        return await self.store.get_reputation(org_id)

    async def update_reputation(self, org_id: str, **changes: Any) -> OrganizationReputation:
        """Create or update a reputation record with the given field values.

        Stake status cannot be changed here; use the stake operations.
        """
        if "stake_status" in changes:
            raise ValidationException("Use pledge/withdraw/slash to change stake status", field="stake_status")
        async with self.locks.hold(org_id):
            reputation = await self._load_or_new(org_id)
            for key, value in changes.items():
                if key not in UPDATABLE_FIELDS:
                    raise ValidationException(f"Unknown reputation field: {key}", field=key)
                setattr(reputation, key, value)
            return await self._save(reputation)

    async def update_consistency_score(
        self,
        org_id: str,
        records: Sequence[ContributionRecord],
        flagged: bool = False,
    ) -> ConsistencyScoreResult:
        """Recompute and persist consistency after a calibration round.

        Args:
            org_id: Organization to update
            records: The organization's contribution records
            flagged: Whether the organization was filtered as an outlier this round
        """
        result = self.calculator.calculate(org_id, records)
        async with self.locks.hold(org_id):
            reputation = await self._load_or_new(org_id)
            reputation.consistency_score = result.score
            reputation.contribution_count += 1
            if flagged:
                reputation.flagged_count += 1
            reputation.volume_score = min(reputation.contribution_count / VOLUME_SATURATION, 1.0)
            age_days = (datetime.now(UTC) - reputation.created_at).days
            reputation.age_score = min(age_days / AGE_SATURATION_DAYS, 1.0)
            await self._save(reputation)

        logger.debug(
            f"Consistency for {org_id}: {result.score:.3f} "
            f"({result.contributions_considered} contributions, flagged={flagged})"
        )
        return result

    # -------------------------------------------------------------------------
    # Stake
    # -------------------------------------------------------------------------

    async def pledge_stake(self, org_id: str, amount: float) -> OrganizationReputation:
        """Add ``amount`` to the organization's active stake."""
        if amount <= 0:
            raise ValidationException("Stake amount must be positive", field="amount", value=amount)
        async with self.locks.hold(org_id):
            reputation = await self._load_or_new(org_id)
            if reputation.stake_status != StakeStatus.ACTIVE:
                raise InvariantViolation(
                    f"Cannot pledge stake: status is {reputation.stake_status}",
                    org_id=org_id,
                )
            reputation.stake_amount += amount
            logger.info(f"Stake pledged for {org_id}: +{amount} (total {reputation.stake_amount})")
            return await self._save(reputation)

    async def withdraw_stake(self, org_id: str) -> OrganizationReputation:
        async with self.locks.hold(org_id):
            reputation = await self._require_active_stake(org_id)
            reputation.stake_status = StakeStatus.WITHDRAWN
            logger.info(f"Stake withdrawn for {org_id}")
            return await self._save(reputation)

    async def slash_stake(self, org_id: str, reason: str) -> OrganizationReputation:
        """Irreversibly slash an organization's stake for detected misbehavior.

        Zeroes base reputation and counts a flag.
        """
        async with self.locks.hold(org_id):
            reputation = await self._require_active_stake(org_id)
            reputation.stake_status = StakeStatus.SLASHED
            reputation.slash_reason = reason
            reputation.base_reputation = 0.0
            reputation.flagged_count += 1
            logger.warning(f"Stake slashed for {org_id}: {reason}")
            return await self._save(reputation)

    async def can_participate(self, org_id: str) -> bool:
        """Whether the organization meets the stake and reputation bar."""
        reputation = await self.store.get_reputation(org_id)
        if reputation is None:
            return False
        return (
            reputation.stake_status == StakeStatus.ACTIVE
            and reputation.stake_amount >= self.config.min_stake_for_participation
            and reputation.base_reputation > 0.0
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _load_or_new(self, org_id: str) -> OrganizationReputation:
        reputation = await self.store.get_reputation(org_id)
        if reputation is None:
            reputation = OrganizationReputation(
                org_id=org_id,
                base_reputation=self.config.new_entrant_reputation,
            )
        return reputation

    async def _require_active_stake(self, org_id: str) -> OrganizationReputation:
        reputation = await self.store.get_reputation(org_id)
        if reputation is None or not reputation.has_active_stake:
            raise InvariantViolation(f"No active stake found for organization {org_id}", org_id=org_id)
        return reputation

    async def _save(self, reputation: OrganizationReputation) -> OrganizationReputation:
        # Re-clamp after direct field assignment
        reputation.__post_init__()
        reputation.last_updated = datetime.now(UTC)
        await self.store.save_reputation(reputation)
        return reputation
