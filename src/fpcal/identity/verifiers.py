# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Organization identity verification.

One verifier class serves every provider. Provider-specific behaviour is
selected by the configuration variant it is built with:

- ``RegistryVerifierConfig``: an established code-hosting organization
  (age, members, public repositories, recent activity)
- ``PaymentVerifierConfig``: an established paying customer
  (age, successful payments, subscription, no delinquency)

Raw facts come from an injected ``EvidenceSource``. Every check fails closed:
a fact the provider did not disclose counts as not satisfied.

Example:
    >>> verifier = IdentityVerifier(RegistryVerifierConfig(), github_source)
    >>> result = await verifier.verify("org-123", "acme-corp")
    >>> if not result.verified:
    ...     print(result.reason)  # "Insufficient members (1, minimum 3)"
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from ..core.config import TrustSettings
from ..core.exceptions import ValidationException
from .models import OrgMetadata, VerificationMethod, VerificationResult

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION VARIANTS
# =============================================================================


@dataclass(frozen=True)
class RegistryVerifierConfig:
    """Thresholds for code-hosting organizations."""

    min_age_days: int = 90
    min_member_count: int = 3
    min_public_signals: int = 1
    recent_activity_days: int = 180
    # Private organizations may pass on age and members alone
    allow_private_fallback: bool = True
    require_good_standing: bool = False

    @classmethod
    def from_settings(cls, settings: TrustSettings) -> RegistryVerifierConfig:
        return cls(
            min_age_days=settings.registry_min_age_days,
            min_member_count=settings.registry_min_member_count,
            min_public_signals=settings.registry_min_public_signals,
            recent_activity_days=settings.registry_recent_activity_days,
            allow_private_fallback=settings.registry_allow_private_fallback,
            require_good_standing=settings.registry_require_good_standing,
        )


@dataclass(frozen=True)
class PaymentVerifierConfig:
    """Thresholds for payment-processor customers."""

    min_age_days: int = 30
    min_successful_payments: int = 1
    require_active_subscription: bool = False
    reject_delinquent: bool = True
    # Company customer with at least one registered tax id
    require_business_verification: bool = False

    @classmethod
    def from_settings(cls, settings: TrustSettings) -> PaymentVerifierConfig:
        return cls(
            min_age_days=settings.payment_min_age_days,
            min_successful_payments=settings.payment_min_successful_payments,
            require_active_subscription=settings.payment_require_active_subscription,
            reject_delinquent=settings.payment_reject_delinquent,
            require_business_verification=settings.payment_require_business_verification,
        )


VerifierConfig = RegistryVerifierConfig | PaymentVerifierConfig


# =============================================================================
# EVIDENCE SOURCE PROTOCOL
# =============================================================================


@runtime_checkable
class EvidenceSource(Protocol):
    """Supplies raw facts about an external account."""

    async def fetch_org_metadata(self, reference: str) -> OrgMetadata | None:
        """Fetch facts for ``reference``.

        Returns:
            The metadata, or None if the provider does not know the reference.

        Raises:
            VerifierInfrastructureError: If the provider could not answer.
        """
        ...


# =============================================================================
# VERIFIER
# =============================================================================


def _shortfall(criterion: str, actual: Any, required: Any) -> str:
    return f"{criterion} ({'unknown' if actual is None else actual}, minimum {required})"


def _age_days(created_at: datetime | None, now: datetime) -> int | None:
    if created_at is None:
        return None
    return (now - created_at).days


class IdentityVerifier:
    """Decides whether an external account proves a real, distinct organization."""

    def __init__(
        self,
        config: VerifierConfig,
        source: EvidenceSource,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.source = source
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def method(self) -> VerificationMethod:
        match self.config:
            case RegistryVerifierConfig():
                return VerificationMethod.REGISTRY
            case PaymentVerifierConfig():
                return VerificationMethod.PAYMENT
        raise TypeError(f"Unsupported verifier config: {type(self.config).__name__}")

    async def verify(self, org_id: str, reference: str) -> VerificationResult:
        """Verify ``reference`` on behalf of ``org_id``.

        Not-found and failed checks come back as a negative result.
        Rate limiting and credential problems raise
        ``VerifierInfrastructureError``.
        """
        method = self.method
        try:
            metadata = await self.source.fetch_org_metadata(reference)
        except ValidationException as e:
            return self._failure(org_id, method, e.message)

        if metadata is None:
            return self._failure(org_id, method, f"External account '{reference}' not found")

        now = self._clock()
        match self.config:
            case RegistryVerifierConfig() as cfg:
                reason, evidence = self._check_registry(cfg, metadata, now)
            case PaymentVerifierConfig() as cfg:
                reason, evidence = self._check_payment(cfg, metadata, now)

        evidence["reference_id"] = metadata.reference_id or reference
        if reason is not None:
            logger.info(f"Verification failed for {org_id} via {method}: {reason}")
            return self._failure(org_id, method, reason, evidence)

        logger.info(f"Verified {org_id} via {method} ({evidence['reference_id']})")
        return VerificationResult(
            org_id=org_id,
            verified=True,
            method=method,
            reason=None,
            evidence=evidence,
            verified_at=now,
        )

    def _check_registry(
        self,
        cfg: RegistryVerifierConfig,
        meta: OrgMetadata,
        now: datetime,
    ) -> tuple[str | None, dict[str, Any]]:
        age = _age_days(meta.created_at, now)
        # Private member lists count as zero members
        members = meta.member_or_activity_count or 0
        public = meta.public_signal_count
        recent = (
            meta.recent_activity_at is not None
            and meta.recent_activity_at >= now - timedelta(days=cfg.recent_activity_days)
        )
        evidence: dict[str, Any] = {
            "age_days": age,
            "member_count": members,
            "public_signal_count": public,
            "has_recent_activity": recent,
            "last_activity_at": meta.recent_activity_at.isoformat() if meta.recent_activity_at else None,
        }

        if age is None or age < cfg.min_age_days:
            return _shortfall("Organization too new", age, cfg.min_age_days), evidence
        if members < cfg.min_member_count:
            return _shortfall("Insufficient members", members, cfg.min_member_count), evidence
        if (public is None or public < cfg.min_public_signals) and not cfg.allow_private_fallback:
            return _shortfall("Insufficient public repositories", public, cfg.min_public_signals), evidence
        if cfg.recent_activity_days > 0 and (public or 0) > 0 and not recent and not cfg.allow_private_fallback:
            return f"No activity in last {cfg.recent_activity_days} days", evidence
        if cfg.require_good_standing and meta.in_good_standing is not True:
            return "Organization not in good standing", evidence
        return None, evidence

    def _check_payment(
        self,
        cfg: PaymentVerifierConfig,
        meta: OrgMetadata,
        now: datetime,
    ) -> tuple[str | None, dict[str, Any]]:
        age = _age_days(meta.created_at, now)
        payments = meta.member_or_activity_count
        evidence: dict[str, Any] = {
            "age_days": age,
            "successful_payment_count": payments,
            "has_active_subscription": meta.has_active_subscription,
            "in_good_standing": meta.in_good_standing,
            "customer_type": meta.customer_type,
            "is_business_verified": meta.is_business_verified,
            "account_created_at": meta.created_at.isoformat() if meta.created_at else None,
        }

        if age is None or age < cfg.min_age_days:
            return _shortfall("Customer account too new", age, cfg.min_age_days), evidence
        if cfg.reject_delinquent and meta.in_good_standing is not True:
            return "Customer has delinquent invoices or unknown standing", evidence
        if payments is None or payments < cfg.min_successful_payments:
            return _shortfall("Insufficient payment history", payments, cfg.min_successful_payments), evidence
        if cfg.require_active_subscription and meta.has_active_subscription is not True:
            return "No active subscription found", evidence
        if cfg.require_business_verification and meta.is_business_verified is not True:
            return "Business verification required but not completed", evidence
        return None, evidence

    def _failure(
        self,
        org_id: str,
        method: VerificationMethod,
        reason: str,
        evidence: dict[str, Any] | None = None,
    ) -> VerificationResult:
        return VerificationResult(
            org_id=org_id,
            verified=False,
            method=method,
            reason=reason,
            evidence=evidence,
        )
