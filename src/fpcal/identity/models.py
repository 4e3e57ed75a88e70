# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Data models for organization identity and nonce binding."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class VerificationMethod(StrEnum):
    """How an organization proved it is a real, distinct entity."""

    REGISTRY = "registry"  # Code-hosting organization (GitHub-style)
    PAYMENT = "payment"  # Payment-processor customer (Stripe-style)
    MANUAL = "manual"  # Operator-reviewed


# =============================================================================
# EVIDENCE
# =============================================================================


@dataclass
class OrgMetadata:
    """Raw facts about an external account, as reported by an evidence source.

    Every field may be None when the provider withholds it (private data,
    missing scopes). Verifiers treat None as "not satisfied".
    """

    reference_id: str | None = None
    created_at: datetime | None = None
    member_or_activity_count: int | None = None
    public_signal_count: int | None = None
    recent_activity_at: datetime | None = None
    in_good_standing: bool | None = None
    has_active_subscription: bool | None = None
    # Payment customers: "individual" or "company"
    customer_type: str | None = None
    is_business_verified: bool | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class VerificationResult:
    """Outcome of an identity verification attempt.

    A negative outcome is a normal result carrying a human-readable reason.
    """

    org_id: str
    verified: bool
    method: VerificationMethod
    reason: str | None = None
    evidence: dict[str, Any] | None = None
    verified_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "verified": self.verified,
            "method": self.method.value,
            "reason": self.reason,
            "evidence": self.evidence,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }


# =============================================================================
# IDENTITY
# =============================================================================


@dataclass
class OrganizationIdentity:
    """A verified organization.

    ``bound_nonce`` points at the organization's current nonce binding (which
    may be revoked); it is empty until the first binding.
    """

    org_id: str
    public_key: str
    method: VerificationMethod
    provider_reference_id: str
    verified_at: datetime = field(default_factory=_utcnow)
    bound_nonce: str = ""
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "org_id": self.org_id,
            "public_key": self.public_key,
            "method": self.method.value,
            "provider_reference_id": self.provider_reference_id,
            "verified_at": self.verified_at.isoformat(),
            "bound_nonce": self.bound_nonce,
            "evidence": self.evidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrganizationIdentity:
        """Create from dictionary."""
        return cls(
            org_id=data["org_id"],
            public_key=data["public_key"],
            method=VerificationMethod(data["method"]),
            provider_reference_id=data["provider_reference_id"],
            verified_at=_parse_dt(data.get("verified_at")) or _utcnow(),
            bound_nonce=data.get("bound_nonce", ""),
            evidence=data.get("evidence") or {},
        )


# =============================================================================
# NONCE BINDING
# =============================================================================


@dataclass
class NonceBinding:
    """A nonce tied to one organization and public key.

    Bindings are never deleted. Revocation and rotation set ``revoked_at``;
    a rotated binding is linked from its successor through ``previous_nonce``.
    """

    nonce: str
    org_id: str
    public_key: str
    method: VerificationMethod
    signature: str
    created_at: datetime = field(default_factory=_utcnow)
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    previous_nonce: str | None = None
    usage_count: int = 0

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "nonce": self.nonce,
            "org_id": self.org_id,
            "public_key": self.public_key,
            "method": self.method.value,
            "signature": self.signature,
            "created_at": self.created_at.isoformat(),
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revocation_reason": self.revocation_reason,
            "previous_nonce": self.previous_nonce,
            "usage_count": self.usage_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NonceBinding:
        """Create from dictionary."""
        return cls(
            nonce=data["nonce"],
            org_id=data["org_id"],
            public_key=data["public_key"],
            method=VerificationMethod(data["method"]),
            signature=data["signature"],
            created_at=_parse_dt(data.get("created_at")) or _utcnow(),
            revoked_at=_parse_dt(data.get("revoked_at")),
            revocation_reason=data.get("revocation_reason"),
            previous_nonce=data.get("previous_nonce"),
            usage_count=data.get("usage_count", 0),
        )


@dataclass
class BindingOutcome:
    """Result of binding or rotating a nonce.

    ``is_new`` is False when the organization had a binding before this one.
    """

    binding: NonceBinding
    is_new: bool
    previous_binding: NonceBinding | None = None


@dataclass
class NonceValidationResult:
    """Outcome of validating a presented nonce."""

    valid: bool
    reason: str | None = None
    binding: NonceBinding | None = None
