"""End-to-end tests for fpcal.service.TrustCore.

Tests cover:
- Enrollment, nonce binding, intake and calibration over one set of stores
- A single attacker among honest organizations is excluded from consensus
- Reports with a bad nonce never reach calibration
- Nonce codec selection from settings
- Logging configured from settings on request
- Revenue analytics over the shared identity store
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from fpcal.calibration.models import ConfidenceCategory, FilterReason
from fpcal.core.config import TrustSettings
from fpcal.identity.models import OrganizationIdentity, OrgMetadata, VerificationMethod
from fpcal.identity.nonce_binding import HmacNonceCodec, RandomNonceCodec
from fpcal.identity.verifiers import IdentityVerifier, RegistryVerifierConfig
from fpcal.service import TrustCore

HONEST_RATES = {"org-0": 0.10, "org-1": 0.11, "org-2": 0.12, "org-3": 0.13, "org-4": 0.14}
ATTACKER_RATE = 0.95


@pytest.fixture
def settings(clean_env, monkeypatch):
    monkeypatch.setenv("FPCAL_OUTLIER_Z_THRESHOLD", "2.0")
    return TrustSettings()


@pytest.fixture
def registry_source():
    now = datetime.now(UTC)

    async def fetch(reference: str) -> OrgMetadata:
        return OrgMetadata(
            reference_id=f"id-{reference}",
            created_at=now - timedelta(days=400),
            member_or_activity_count=10,
            public_signal_count=4,
            recent_activity_at=now - timedelta(days=3),
        )

    source = AsyncMock()
    source.fetch_org_metadata = AsyncMock(side_effect=fetch)
    return source


@pytest.fixture
def core(settings, registry_source):
    verifier = IdentityVerifier(RegistryVerifierConfig(), registry_source)
    return TrustCore(use_memory=True, settings=settings, verifiers=[verifier])


async def _onboard(core: TrustCore, org_id: str, public_key: str) -> str:
    result = await core.enrollment.enroll(org_id, VerificationMethod.REGISTRY, f"gh-{org_id}", public_key)
    assert result.verified, result.reason
    outcome = await core.nonces.generate_and_bind(org_id, public_key)
    await core.engine.update_reputation(org_id, base_reputation=1.0)
    return outcome.binding.nonce


# ============================================================================
# Full Round
# ============================================================================


class TestCalibrationRound:
    async def test_single_attacker_excluded(self, core, public_key):
        for org_id, rate in {**HONEST_RATES, "org-x": ATTACKER_RATE}.items():
            nonce = await _onboard(core, org_id, public_key)
            decision = await core.intake.submit(org_id, nonce, "rule-42", rate, 20)
            assert decision.accepted

        result = await core.aggregator.calibrate("rule-42")
        await core.aggregator.wait_for_pending_updates()

        assert result.filter_summary.reasons_by_org() == {"org-x": FilterReason.OUTLIER}
        assert abs(result.consensus_fp_rate - 0.12) <= 0.02
        assert result.confidence.category == ConfidenceCategory.HIGH
        assert (await core.engine.get_reputation("org-x")).flagged_count == 1
        assert (await core.aggregator.get_calibration_result("rule-42")).round_id == result.round_id

    async def test_bad_nonce_never_counted(self, core, public_key):
        for org_id, rate in HONEST_RATES.items():
            nonce = await _onboard(core, org_id, public_key)
            await core.intake.submit(org_id, nonce, "rule-42", rate, 20)
        await _onboard(core, "org-x", public_key)

        decision = await core.intake.submit("org-x", "f" * 64, "rule-42", ATTACKER_RATE, 20)
        result = await core.aggregator.calibrate("rule-42")

        assert decision.accepted is False
        assert result.total_contributor_count == 5
        assert result.consensus_fp_rate == pytest.approx(0.12)

    async def test_usage_counted_per_submission(self, core, public_key):
        nonce = await _onboard(core, "org-0", public_key)
        for rule_id in ("rule-1", "rule-2"):
            await core.intake.submit("org-0", nonce, rule_id, 0.1, 5)

        assert (await core.nonces.get_current_binding("org-0")).usage_count == 2
        assert set(await core.aggregator.calibrate_all()) == {"rule-1", "rule-2"}


# ============================================================================
# Wiring
# ============================================================================


class TestWiring:
    def test_random_codec_by_default(self, core):
        assert isinstance(core.nonces.codec, RandomNonceCodec)

    def test_hmac_codec_with_secret(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_NONCE_HMAC_SECRET", "s3cret")

        core = TrustCore(use_memory=True, settings=TrustSettings())

        assert isinstance(core.nonces.codec, HmacNonceCodec)

    async def test_hmac_nonces_validate(self, clean_env, monkeypatch, registry_source, public_key):
        monkeypatch.setenv("FPCAL_NONCE_HMAC_SECRET", "s3cret")
        verifier = IdentityVerifier(RegistryVerifierConfig(), registry_source)
        core = TrustCore(use_memory=True, settings=TrustSettings(), verifiers=[verifier])

        nonce = await _onboard(core, "org-a", public_key)

        assert (await core.nonces.validate("org-a", nonce)).valid

    def test_settings_flow_into_components(self, core):
        assert core.aggregator.filter.config.z_score_threshold == 2.0
        assert core.engine.locks is core.nonces.locks

    def test_logging_left_alone_by_default(self, settings):
        with patch("fpcal.service.configure_logging") as configure:
            TrustCore(use_memory=True, settings=settings)

        configure.assert_not_called()

    def test_configure_logs_uses_core_settings(self, settings):
        with patch("fpcal.service.configure_logging") as configure:
            TrustCore(use_memory=True, settings=settings, configure_logs=True)

        configure.assert_called_once_with(settings=settings)

    async def test_revenue_reads_enrolled_payers(self, core, public_key):
        payer = OrganizationIdentity("org-p", public_key, VerificationMethod.PAYMENT, "cus_1")
        await core.stores.identities.save_identity(payer)

        assert [o.org_id for o in await core.revenue.get_revenue_verified_orgs()] == ["org-p"]
