"""Organization enrollment: verify an external account, then record the identity."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ..core.exceptions import ConfigException, ConflictError, ValidationException
from ..core.locking import OrgLockRegistry
from .models import OrganizationIdentity, VerificationMethod, VerificationResult
from .nonce_binding import is_valid_public_key
from .verifiers import IdentityVerifier

if TYPE_CHECKING:
    from ..storage.base import IdentityStore

logger = logging.getLogger(__name__)

DUPLICATE_REFERENCE_REASON = "External reference already bound to another organization"


class IdentityEnrollmentService:
    """Creates ``OrganizationIdentity`` records from successful verifications.

    No two organizations may enroll with the same external account.
    """

    def __init__(
        self,
        identities: IdentityStore,
        verifiers: list[IdentityVerifier],
        locks: OrgLockRegistry | None = None,
    ):
        self.identities = identities
        self.verifiers = {v.method: v for v in verifiers}
        self.locks = locks or OrgLockRegistry()

    async def enroll(
        self,
        org_id: str,
        method: VerificationMethod,
        reference: str,
        public_key: str,
    ) -> VerificationResult:
        """Verify ``reference`` and record the organization on success.

        Raises:
            ConflictError: If ``org_id`` is already enrolled.
            ValidationException: If the public key is malformed.
            ConfigException: If no verifier is configured for ``method``.
        """
        verifier = self.verifiers.get(method)
        if verifier is None:
            raise ConfigException(f"No verifier configured for method '{method}'")
        if not is_valid_public_key(public_key):
            raise ValidationException("Public key must be 64-512 hex characters", field="public_key")

        async with self.locks.hold(org_id):
            if await self.identities.get_identity(org_id) is not None:
                raise ConflictError(f"Organization {org_id} is already enrolled", existing_id=org_id)

            duplicate = await self._reference_holder(method, reference)
            if duplicate is not None:
                return self._duplicate(org_id, method, duplicate)

            result = await verifier.verify(org_id, reference)
            if not result.verified:
                return result

            # The submitted reference may be an alias (e.g. a case variant of a
            # login); uniqueness is keyed on the provider's stable id
            evidence = dict(result.evidence or {})
            provider_id = str(evidence.get("reference_id") or reference)
            evidence["submitted_reference"] = reference
            if provider_id != reference:
                duplicate = await self._reference_holder(method, provider_id)
                if duplicate is not None:
                    return self._duplicate(org_id, method, duplicate)

            identity = OrganizationIdentity(
                org_id=org_id,
                public_key=public_key,
                method=method,
                provider_reference_id=provider_id,
                verified_at=result.verified_at or datetime.now(UTC),
                evidence=evidence,
            )
            try:
                await self.identities.save_identity(identity)
            except ConflictError as e:
                return self._duplicate(org_id, method, e.existing_id)

            logger.info(f"Enrolled {org_id} via {method}")
            return result

    async def enroll_manual(
        self,
        org_id: str,
        reference: str,
        public_key: str,
        approved_by: str,
        notes: str | None = None,
    ) -> OrganizationIdentity:
        """Record an operator-reviewed organization.

        Raises:
            ConflictError: If the organization or reference is already enrolled.
            ValidationException: If the public key is malformed.
        """
        if not is_valid_public_key(public_key):
            raise ValidationException("Public key must be 64-512 hex characters", field="public_key")

        evidence: dict[str, Any] = {"approved_by": approved_by}
        if notes:
            evidence["notes"] = notes

        async with self.locks.hold(org_id):
            if await self.identities.get_identity(org_id) is not None:
                raise ConflictError(f"Organization {org_id} is already enrolled", existing_id=org_id)
            if await self._reference_holder(VerificationMethod.MANUAL, reference) is not None:
                raise ConflictError(DUPLICATE_REFERENCE_REASON)

            identity = OrganizationIdentity(
                org_id=org_id,
                public_key=public_key,
                method=VerificationMethod.MANUAL,
                provider_reference_id=reference,
                evidence=evidence,
            )
            await self.identities.save_identity(identity)
            logger.info(f"Manually enrolled {org_id} (approved by {approved_by})")
            return identity

    async def _reference_holder(self, method: VerificationMethod, reference: str) -> str | None:
        holder = await self.identities.get_identity_by_reference(method, reference)
        return holder.org_id if holder else None

    def _duplicate(self, org_id: str, method: VerificationMethod, holder: str | None) -> VerificationResult:
        logger.warning(f"Rejected {org_id}: reference already held by {holder}")
        return VerificationResult(
            org_id=org_id,
            verified=False,
            method=method,
            reason=DUPLICATE_REFERENCE_REASON,
        )
