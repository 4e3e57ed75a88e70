"""Tests for fpcal.storage.postgres - PostgreSQL store backends.

Tests cover:
- SQL statements and parameters issued per operation
- Row to model conversion
- Unique violations surfaced as ConflictError
- JSON result payloads (decoded dicts and raw strings)
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
from psycopg2.errors import UniqueViolation

from fpcal.core.exceptions import ConflictError
from fpcal.identity.models import NonceBinding, OrganizationIdentity, VerificationMethod
from fpcal.reputation.models import OrganizationReputation, StakeStatus
from fpcal.storage.postgres import (
    PostgresCalibrationResultStore,
    PostgresContributionSource,
    PostgresContributionStore,
    PostgresIdentityStore,
    PostgresNonceBindingStore,
    PostgresReputationStore,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def _sql(cursor) -> str:
    return " ".join(cursor.execute.call_args[0][0].split())


def _params(cursor) -> tuple:
    return cursor.execute.call_args[0][1]


# ============================================================================
# Identities
# ============================================================================


class TestPostgresIdentityStore:
    async def test_get_missing(self, mock_cursor):
        assert await PostgresIdentityStore().get_identity("org-a") is None
        assert _params(mock_cursor) == ("org-a",)

    async def test_get_converts_row(self, mock_cursor):
        mock_cursor.fetchone.return_value = {
            "org_id": "org-a",
            "public_key": "ab" * 32,
            "method": "payment",
            "provider_reference_id": "cus_1",
            "verified_at": NOW,
            "bound_nonce": None,
            "evidence": None,
        }

        identity = await PostgresIdentityStore().get_identity("org-a")

        assert identity.method == VerificationMethod.PAYMENT
        assert identity.bound_nonce == ""
        assert identity.evidence == {}

    async def test_lookup_by_reference(self, mock_cursor):
        await PostgresIdentityStore().get_identity_by_reference(VerificationMethod.REGISTRY, "acme")

        assert "provider_reference_id = %s" in _sql(mock_cursor)
        assert _params(mock_cursor) == ("registry", "acme")

    async def test_save_upserts(self, mock_cursor):
        identity = OrganizationIdentity("org-a", "ab" * 32, VerificationMethod.REGISTRY, "acme", verified_at=NOW)

        await PostgresIdentityStore().save_identity(identity)

        assert "ON CONFLICT (org_id) DO UPDATE" in _sql(mock_cursor)
        assert _params(mock_cursor)[:4] == ("org-a", "ab" * 32, "registry", "acme")

    async def test_duplicate_reference_conflicts(self, mock_cursor):
        mock_cursor.execute.side_effect = UniqueViolation("duplicate key")
        identity = OrganizationIdentity("org-b", "ab" * 32, VerificationMethod.REGISTRY, "acme")

        with pytest.raises(ConflictError, match="acme"):
            await PostgresIdentityStore().save_identity(identity)

    async def test_list_by_method(self, mock_cursor):
        mock_cursor.fetchall.return_value = [
            {
                "org_id": "org-p",
                "public_key": "ab" * 32,
                "method": "payment",
                "provider_reference_id": "cus_1",
                "verified_at": NOW,
                "bound_nonce": "",
                "evidence": {"successful_payment_count": 4},
            }
        ]

        identities = await PostgresIdentityStore().list_identities(VerificationMethod.PAYMENT)

        assert "WHERE method = %s ORDER BY org_id" in _sql(mock_cursor)
        assert _params(mock_cursor) == ("payment",)
        assert identities[0].evidence == {"successful_payment_count": 4}

    async def test_list_all(self, mock_cursor):
        assert await PostgresIdentityStore().list_identities() == []
        assert _sql(mock_cursor) == "SELECT * FROM org_identities ORDER BY org_id"


# ============================================================================
# Bindings
# ============================================================================


class TestPostgresNonceBindingStore:
    async def test_list_converts_rows(self, mock_cursor):
        mock_cursor.fetchall.return_value = [
            {
                "nonce": "n1",
                "org_id": "org-a",
                "public_key": "ab" * 32,
                "method": "registry",
                "signature": "sig",
                "created_at": NOW,
                "revoked_at": NOW,
                "revocation_reason": "Rotated: scheduled",
                "previous_nonce": None,
                "usage_count": 7,
            }
        ]

        bindings = await PostgresNonceBindingStore().list_bindings("org-a")

        assert bindings[0].is_revoked
        assert bindings[0].usage_count == 7
        assert "ORDER BY created_at ASC" in _sql(mock_cursor)

    async def test_active_binding_conflict(self, mock_cursor):
        mock_cursor.execute.side_effect = UniqueViolation("one active binding per org")
        binding = NonceBinding("n1", "org-a", "ab" * 32, VerificationMethod.REGISTRY, "sig")

        with pytest.raises(ConflictError):
            await PostgresNonceBindingStore().save_binding(binding)


# ============================================================================
# Reputations
# ============================================================================


class TestPostgresReputationStore:
    async def test_save_params(self, mock_cursor):
        rep = OrganizationReputation("org-a", base_reputation=0.8, stake_amount=500, stake_status=StakeStatus.WITHDRAWN)

        await PostgresReputationStore().save_reputation(rep)

        params = _params(mock_cursor)
        assert params[:4] == ("org-a", 0.8, 500, "withdrawn")
        assert "ON CONFLICT (org_id) DO UPDATE" in _sql(mock_cursor)

    async def test_get_converts_row(self, mock_cursor):
        mock_cursor.fetchone.return_value = {
            "org_id": "org-a",
            "base_reputation": 0.9,
            "stake_amount": 1000.0,
            "stake_status": "slashed",
            "consistency_score": 0.4,
            "age_score": 0.1,
            "volume_score": 0.2,
            "contribution_count": 20,
            "flagged_count": 3,
            "slash_reason": "fraud",
            "created_at": NOW,
            "last_updated": NOW,
        }

        rep = await PostgresReputationStore().get_reputation("org-a")

        assert rep.stake_status == StakeStatus.SLASHED
        assert rep.has_active_stake is False
        assert rep.flagged_count == 3


# ============================================================================
# Records, Results and Raw Contributions
# ============================================================================


class TestPostgresContributionStore:
    async def test_since_filter(self, mock_cursor):
        await PostgresContributionStore().get_records_for_org("org-a", since=NOW)

        assert '"timestamp" >= %s' in _sql(mock_cursor)
        assert _params(mock_cursor) == ("org-a", NOW)

    async def test_without_since(self, mock_cursor):
        await PostgresContributionStore().get_records_for_org("org-a")
        assert _params(mock_cursor) == ("org-a",)

    async def test_add_record(self, mock_cursor, record_factory):
        record = record_factory(0.2, 0.1)

        await PostgresContributionStore().add_record(record)

        assert _params(mock_cursor)[:5] == ("org-a", "rule-1", 0.2, 0.1, 10)


class TestPostgresCalibrationResultStore:
    @pytest.fixture
    def payload(self):
        return {
            "rule_id": "rule-1",
            "round_id": "round-1",
            "consensus_fp_rate": 0.12,
            "trusted_contributor_count": 5,
            "total_contributor_count": 6,
            "total_event_count": 100,
            "confidence": {
                "level": 0.81,
                "category": "high",
                "factors": {"contributor_count": 0.5, "agreement": 0.9, "event_volume": 1.0, "reputation": 1.0},
                "reason": None,
            },
            "filter_summary": {"total_contributors": 6, "trusted_count": 5, "filter_rate": 1 / 6},
            "calculated_at": NOW.isoformat(),
        }

    async def test_latest_from_dict_payload(self, mock_cursor, payload):
        mock_cursor.fetchone.return_value = {"payload": payload}

        result = await PostgresCalibrationResultStore().get_latest_result("rule-1")

        assert result.round_id == "round-1"
        assert result.calculated_at == NOW
        assert "ORDER BY calculated_at DESC" in _sql(mock_cursor)

    async def test_latest_from_string_payload(self, mock_cursor, payload):
        mock_cursor.fetchone.return_value = {"payload": json.dumps(payload)}

        result = await PostgresCalibrationResultStore().get_latest_result("rule-1")

        assert result.consensus_fp_rate == 0.12

    async def test_missing(self, mock_cursor):
        assert await PostgresCalibrationResultStore().get_latest_result("rule-1") is None


class TestPostgresContributionSource:
    async def test_add_upserts(self, mock_cursor, contribution_factory):
        await PostgresContributionSource().add_contribution(contribution_factory("org-a", 0.3))

        assert "ON CONFLICT (rule_id, org_id) DO UPDATE" in _sql(mock_cursor)
        assert _params(mock_cursor)[:4] == ("rule-1", "org-a", 0.3, 20)

    async def test_rule_ids(self, mock_cursor):
        mock_cursor.fetchall.return_value = [{"rule_id": "a"}, {"rule_id": "b"}]

        assert await PostgresContributionSource().list_rule_ids() == ["a", "b"]

    async def test_resubmission_clears_round(self, mock_cursor, contribution_factory):
        await PostgresContributionSource().add_contribution(contribution_factory("org-a", 0.3))

        assert "round_id = NULL" in _sql(mock_cursor)

    async def test_get_reads_pending_only(self, mock_cursor):
        await PostgresContributionSource().get_contributions("rule-1")

        assert "round_id IS NULL" in _sql(mock_cursor)
        assert _params(mock_cursor) == ("rule-1",)

    async def test_take_marks_round(self, mock_cursor):
        mock_cursor.fetchall.return_value = [
            {"rule_id": "rule-1", "org_id": "org-b", "fp_rate": 0.2, "event_count": 5, "submitted_at": NOW},
            {"rule_id": "rule-1", "org_id": "org-a", "fp_rate": 0.1, "event_count": 9, "submitted_at": NOW},
        ]

        taken = await PostgresContributionSource().take_contributions("rule-1", "round-7")

        sql = _sql(mock_cursor)
        assert sql.startswith("UPDATE raw_contributions SET round_id = %s")
        assert "AND round_id IS NULL RETURNING" in sql
        assert _params(mock_cursor) == ("round-7", "rule-1")
        assert [c.org_id for c in taken] == ["org-a", "org-b"]
        assert taken[0].event_count == 9

    async def test_rule_ids_pending_only(self, mock_cursor):
        mock_cursor.fetchall.return_value = []

        await PostgresContributionSource().list_rule_ids()

        assert "WHERE round_id IS NULL" in _sql(mock_cursor)
