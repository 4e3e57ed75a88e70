# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Analytics over payment-verified organizations.

Operators use this to see which contributors are paying customers: how many
there are, how established, which hold an active subscription, and which are
verified businesses. Figures come from the evidence recorded at enrollment;
pass an ``EvidenceSource`` to refresh them from the payment processor instead.

Usage:
    tracker = RevenueTrackingService(core.stores.identities)
    stats = await tracker.get_revenue_stats()
    top = await tracker.get_high_value_orgs(min_payments=10)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ..core.exceptions import VerifierInfrastructureError
from .models import OrganizationIdentity, OrgMetadata, VerificationMethod

if TYPE_CHECKING:
    from ..storage.base import IdentityStore
    from .verifiers import EvidenceSource

logger = logging.getLogger(__name__)

DEFAULT_HIGH_VALUE_PAYMENTS = 5


@dataclass
class RevenueVerifiedOrg:
    """One payment-verified organization as seen by the tracker."""

    org_id: str
    customer_id: str
    verified_at: datetime
    account_age_days: int
    payment_count: int
    has_active_subscription: bool
    is_business_verified: bool
    customer_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "verified_at": self.verified_at.isoformat(),
            "account_age_days": self.account_age_days,
            "payment_count": self.payment_count,
            "has_active_subscription": self.has_active_subscription,
            "is_business_verified": self.is_business_verified,
            "customer_type": self.customer_type,
        }


@dataclass
class RevenueStats:
    total_verified_orgs: int = 0
    avg_account_age_days: int = 0
    avg_payment_count: float = 0.0
    active_subscription_count: int = 0
    business_verified_count: int = 0
    individual_count: int = 0
    company_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_verified_orgs": self.total_verified_orgs,
            "avg_account_age_days": self.avg_account_age_days,
            "avg_payment_count": self.avg_payment_count,
            "active_subscription_count": self.active_subscription_count,
            "business_verified_count": self.business_verified_count,
            "individual_count": self.individual_count,
            "company_count": self.company_count,
        }


class RevenueTrackingService:
    """Read-only reporting over identities enrolled via ``VerificationMethod.PAYMENT``."""

    def __init__(
        self,
        identities: IdentityStore,
        source: EvidenceSource | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.identities = identities
        self.source = source
        self._clock = clock or (lambda: datetime.now(UTC))

    async def get_revenue_verified_orgs(self) -> list[RevenueVerifiedOrg]:
        """Every payment-verified organization, ordered by org id.

        With a refresh source, customers the processor no longer knows are
        left out, as are customers it cannot be reached for (logged).
        """
        orgs = []
        for identity in await self.identities.list_identities(VerificationMethod.PAYMENT):
            if self.source is None:
                orgs.append(self._from_evidence(identity))
                continue
            try:
                metadata = await self.source.fetch_org_metadata(identity.provider_reference_id)
            except VerifierInfrastructureError as e:
                logger.warning(f"Skipping {identity.org_id}: customer lookup failed: {e.message}")
                continue
            if metadata is None:
                logger.info(f"Skipping {identity.org_id}: customer {identity.provider_reference_id} no longer exists")
                continue
            orgs.append(self._from_metadata(identity, metadata))
        return orgs

    async def get_revenue_stats(self) -> RevenueStats:
        orgs = await self.get_revenue_verified_orgs()
        if not orgs:
            return RevenueStats()

        count = len(orgs)
        return RevenueStats(
            total_verified_orgs=count,
            avg_account_age_days=round(sum(o.account_age_days for o in orgs) / count),
            avg_payment_count=round(sum(o.payment_count for o in orgs) / count, 1),
            active_subscription_count=sum(1 for o in orgs if o.has_active_subscription),
            business_verified_count=sum(1 for o in orgs if o.is_business_verified),
            individual_count=sum(1 for o in orgs if o.customer_type == "individual"),
            company_count=sum(1 for o in orgs if o.customer_type == "company"),
        )

    async def get_high_value_orgs(self, min_payments: int = DEFAULT_HIGH_VALUE_PAYMENTS) -> list[RevenueVerifiedOrg]:
        """Organizations with at least ``min_payments`` successful payments."""
        return [o for o in await self.get_revenue_verified_orgs() if o.payment_count >= min_payments]

    async def get_active_subscribers(self) -> list[RevenueVerifiedOrg]:
        return [o for o in await self.get_revenue_verified_orgs() if o.has_active_subscription]

    async def get_orgs_by_verification_date(
        self,
        start: datetime,
        end: datetime | None = None,
    ) -> list[RevenueVerifiedOrg]:
        """Organizations verified within ``[start, end]``; ``end`` defaults to now."""
        end = end or self._clock()
        return [o for o in await self.get_revenue_verified_orgs() if start <= o.verified_at <= end]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _age_days(self, created_at: datetime | None) -> int:
        return (self._clock() - created_at).days if created_at else 0

    def _from_evidence(self, identity: OrganizationIdentity) -> RevenueVerifiedOrg:
        evidence = identity.evidence
        created = evidence.get("account_created_at")
        return RevenueVerifiedOrg(
            org_id=identity.org_id,
            customer_id=identity.provider_reference_id,
            verified_at=identity.verified_at,
            account_age_days=(
                self._age_days(datetime.fromisoformat(created)) if created else evidence.get("age_days") or 0
            ),
            payment_count=evidence.get("successful_payment_count") or 0,
            has_active_subscription=evidence.get("has_active_subscription") is True,
            is_business_verified=evidence.get("is_business_verified") is True,
            customer_type=evidence.get("customer_type"),
        )

    def _from_metadata(self, identity: OrganizationIdentity, metadata: OrgMetadata) -> RevenueVerifiedOrg:
        return RevenueVerifiedOrg(
            org_id=identity.org_id,
            customer_id=identity.provider_reference_id,
            verified_at=identity.verified_at,
            account_age_days=self._age_days(metadata.created_at),
            payment_count=metadata.member_or_activity_count or 0,
            has_active_subscription=metadata.has_active_subscription is True,
            is_business_verified=metadata.is_business_verified is True,
            customer_type=metadata.customer_type,
        )
