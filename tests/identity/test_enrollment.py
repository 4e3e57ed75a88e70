"""Tests for fpcal.identity.enrollment - turning verifications into identities."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fpcal.core.exceptions import ConfigException, ConflictError, ValidationException
from fpcal.identity.enrollment import DUPLICATE_REFERENCE_REASON, IdentityEnrollmentService
from fpcal.identity.models import OrgMetadata, VerificationMethod
from fpcal.identity.verifiers import IdentityVerifier, RegistryVerifierConfig


@pytest.fixture
def source(fixed_now):
    source = AsyncMock()
    source.fetch_org_metadata.return_value = OrgMetadata(
        reference_id=None,
        created_at=fixed_now - timedelta(days=365),
        member_or_activity_count=8,
        public_signal_count=4,
        recent_activity_at=fixed_now - timedelta(days=2),
    )
    return source


@pytest.fixture
def service(stores, source, clock):
    verifier = IdentityVerifier(RegistryVerifierConfig(), source, clock)
    return IdentityEnrollmentService(stores.identities, [verifier])


class TestEnroll:
    async def test_successful_enrollment(self, service, stores, public_key, fixed_now):
        result = await service.enroll("org-a", VerificationMethod.REGISTRY, "acme", public_key)

        assert result.verified is True
        identity = await stores.identities.get_identity("org-a")
        assert identity.provider_reference_id == "acme"
        assert identity.public_key == public_key
        assert identity.verified_at == fixed_now
        assert identity.evidence["member_count"] == 8
        assert identity.bound_nonce == ""

    async def test_failed_verification_not_stored(self, service, stores, source, public_key):
        source.fetch_org_metadata.return_value = None

        result = await service.enroll("org-a", VerificationMethod.REGISTRY, "ghost", public_key)

        assert result.verified is False
        assert await stores.identities.get_identity("org-a") is None

    async def test_duplicate_reference_rejected(self, service, source, public_key):
        await service.enroll("org-a", VerificationMethod.REGISTRY, "acme", public_key)

        result = await service.enroll("org-b", VerificationMethod.REGISTRY, "acme", public_key)

        assert result.verified is False
        assert result.reason == DUPLICATE_REFERENCE_REASON
        # Rejected before asking the provider again
        assert source.fetch_org_metadata.await_count == 1

    async def test_keyed_on_provider_id(self, service, stores, source, public_key):
        source.fetch_org_metadata.return_value.reference_id = "12345"

        await service.enroll("org-a", VerificationMethod.REGISTRY, "acme", public_key)

        identity = await stores.identities.get_identity("org-a")
        assert identity.provider_reference_id == "12345"
        assert identity.evidence["submitted_reference"] == "acme"

    async def test_alias_of_enrolled_account_rejected(self, service, stores, source, public_key):
        # Logins are case-insensitive; both resolve to the same provider id
        source.fetch_org_metadata.return_value.reference_id = "12345"
        await service.enroll("org-a", VerificationMethod.REGISTRY, "acme", public_key)

        result = await service.enroll("org-b", VerificationMethod.REGISTRY, "ACME", public_key)

        assert result.verified is False
        assert result.reason == DUPLICATE_REFERENCE_REASON
        assert await stores.identities.get_identity("org-b") is None

    async def test_already_enrolled(self, service, public_key):
        await service.enroll("org-a", VerificationMethod.REGISTRY, "acme", public_key)

        with pytest.raises(ConflictError):
            await service.enroll("org-a", VerificationMethod.REGISTRY, "acme-2", public_key)

    async def test_bad_public_key(self, service):
        with pytest.raises(ValidationException):
            await service.enroll("org-a", VerificationMethod.REGISTRY, "acme", "xyz")

    async def test_unconfigured_method(self, service, public_key):
        with pytest.raises(ConfigException, match="payment"):
            await service.enroll("org-a", VerificationMethod.PAYMENT, "cus_1", public_key)


class TestEnrollManual:
    async def test_manual_enrollment(self, service, stores, public_key):
        identity = await service.enroll_manual("org-m", "ticket-42", public_key, approved_by="ops", notes="reviewed")

        assert identity.method == VerificationMethod.MANUAL
        assert identity.evidence == {"approved_by": "ops", "notes": "reviewed"}
        assert (await stores.identities.get_identity("org-m")).provider_reference_id == "ticket-42"

    async def test_manual_duplicate_reference(self, service, public_key):
        await service.enroll_manual("org-m", "ticket-42", public_key, approved_by="ops")

        with pytest.raises(ConflictError, match=DUPLICATE_REFERENCE_REASON):
            await service.enroll_manual("org-n", "ticket-42", public_key, approved_by="ops")

    async def test_manual_already_enrolled(self, service, public_key):
        await service.enroll("org-a", VerificationMethod.REGISTRY, "acme", public_key)

        with pytest.raises(ConflictError):
            await service.enroll_manual("org-a", "ticket-1", public_key, approved_by="ops")
