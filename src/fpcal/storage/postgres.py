# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""PostgreSQL store implementations.

SQL runs synchronously through ``fpcal.core.db.get_cursor`` and is pushed
onto a worker thread with ``asyncio.to_thread``. Run ``init_schema()`` once
before first use.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

from psycopg2.errors import UniqueViolation
from psycopg2.extras import Json

from ..calibration.models import CalibrationResult, RawContribution
from ..core.db import get_cursor
from ..core.exceptions import ConflictError
from ..identity.models import NonceBinding, OrganizationIdentity, VerificationMethod
from ..reputation.models import ContributionRecord, OrganizationReputation, StakeStatus
from .base import (
    CalibrationResultStore,
    ContributionSink,
    ContributionSource,
    ContributionStore,
    IdentityStore,
    NonceBindingStore,
    ReputationStore,
)

logger = logging.getLogger(__name__)


def _identity_from_row(row: dict[str, Any]) -> OrganizationIdentity:
    return OrganizationIdentity(
        org_id=row["org_id"],
        public_key=row["public_key"],
        method=VerificationMethod(row["method"]),
        provider_reference_id=row["provider_reference_id"],
        verified_at=row["verified_at"],
        bound_nonce=row["bound_nonce"] or "",
        evidence=row["evidence"] or {},
    )


def _binding_from_row(row: dict[str, Any]) -> NonceBinding:
    return NonceBinding(
        nonce=row["nonce"],
        org_id=row["org_id"],
        public_key=row["public_key"],
        method=VerificationMethod(row["method"]),
        signature=row["signature"],
        created_at=row["created_at"],
        revoked_at=row["revoked_at"],
        revocation_reason=row["revocation_reason"],
        previous_nonce=row["previous_nonce"],
        usage_count=row["usage_count"],
    )


def _reputation_from_row(row: dict[str, Any]) -> OrganizationReputation:
    return OrganizationReputation(
        org_id=row["org_id"],
        base_reputation=row["base_reputation"],
        stake_amount=row["stake_amount"],
        stake_status=StakeStatus(row["stake_status"]),
        consistency_score=row["consistency_score"],
        age_score=row["age_score"],
        volume_score=row["volume_score"],
        contribution_count=row["contribution_count"],
        flagged_count=row["flagged_count"],
        slash_reason=row["slash_reason"],
        created_at=row["created_at"],
        last_updated=row["last_updated"],
    )


def _record_from_row(row: dict[str, Any]) -> ContributionRecord:
    return ContributionRecord(
        org_id=row["org_id"],
        rule_id=row["rule_id"],
        contributed_fp_rate=row["contributed_fp_rate"],
        consensus_fp_rate=row["consensus_fp_rate"],
        event_count=row["event_count"],
        timestamp=row["timestamp"],
        round_id=row["round_id"],
    )


def _contribution_from_row(row: dict[str, Any]) -> RawContribution:
    return RawContribution(
        org_id=row["org_id"],
        rule_id=row["rule_id"],
        fp_rate=row["fp_rate"],
        event_count=row["event_count"],
        submitted_at=row["submitted_at"],
    )


# =============================================================================
# IDENTITIES
# =============================================================================


class PostgresIdentityStore(IdentityStore):
    def _get(self, org_id: str) -> OrganizationIdentity | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM org_identities WHERE org_id = %s", (org_id,))
            row = cur.fetchone()
        return _identity_from_row(row) if row else None

    def _get_by_reference(self, method: str, reference_id: str) -> OrganizationIdentity | None:
        with get_cursor() as cur:
            cur.execute(
                "SELECT * FROM org_identities WHERE method = %s AND provider_reference_id = %s",
                (method, reference_id),
            )
            row = cur.fetchone()
        return _identity_from_row(row) if row else None

    def _list(self, method: str | None) -> list[OrganizationIdentity]:
        with get_cursor() as cur:
            if method is None:
                cur.execute("SELECT * FROM org_identities ORDER BY org_id")
            else:
                cur.execute("SELECT * FROM org_identities WHERE method = %s ORDER BY org_id", (method,))
            rows = cur.fetchall()
        return [_identity_from_row(row) for row in rows]

    def _save(self, identity: OrganizationIdentity) -> None:
        try:
            with get_cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO org_identities (
                        org_id, public_key, method, provider_reference_id,
                        verified_at, bound_nonce, evidence
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (org_id) DO UPDATE SET
                        public_key = EXCLUDED.public_key,
                        bound_nonce = EXCLUDED.bound_nonce,
                        evidence = EXCLUDED.evidence
                    """,
                    (
                        identity.org_id,
                        identity.public_key,
                        identity.method.value,
                        identity.provider_reference_id,
                        identity.verified_at,
                        identity.bound_nonce,
                        Json(identity.evidence),
                    ),
                )
        except UniqueViolation as e:
            raise ConflictError(
                f"Reference {identity.provider_reference_id} already bound to another organization"
            ) from e

    async def get_identity(self, org_id: str) -> OrganizationIdentity | None:
        return await asyncio.to_thread(self._get, org_id)

    async def get_identity_by_reference(
        self,
        method: VerificationMethod,
        reference_id: str,
    ) -> OrganizationIdentity | None:
        return await asyncio.to_thread(self._get_by_reference, method.value, reference_id)

    async def save_identity(self, identity: OrganizationIdentity) -> None:
        await asyncio.to_thread(self._save, identity)

    async def list_identities(self, method: VerificationMethod | None = None) -> list[OrganizationIdentity]:
        return await asyncio.to_thread(self._list, method.value if method is not None else None)


# =============================================================================
# NONCE BINDINGS
# =============================================================================


class PostgresNonceBindingStore(NonceBindingStore):
    def _get(self, nonce: str) -> NonceBinding | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM nonce_bindings WHERE nonce = %s", (nonce,))
            row = cur.fetchone()
        return _binding_from_row(row) if row else None

    def _save(self, binding: NonceBinding) -> None:
        try:
            with get_cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO nonce_bindings (
                        nonce, org_id, public_key, method, signature, created_at,
                        revoked_at, revocation_reason, previous_nonce, usage_count
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (nonce) DO UPDATE SET
                        revoked_at = EXCLUDED.revoked_at,
                        revocation_reason = EXCLUDED.revocation_reason,
                        usage_count = EXCLUDED.usage_count
                    """,
                    (
                        binding.nonce,
                        binding.org_id,
                        binding.public_key,
                        binding.method.value,
                        binding.signature,
                        binding.created_at,
                        binding.revoked_at,
                        binding.revocation_reason,
                        binding.previous_nonce,
                        binding.usage_count,
                    ),
                )
        except UniqueViolation as e:
            raise ConflictError(f"Organization {binding.org_id} already has an active nonce binding") from e

    def _list(self, org_id: str) -> list[NonceBinding]:
        with get_cursor() as cur:
            cur.execute(
                "SELECT * FROM nonce_bindings WHERE org_id = %s ORDER BY created_at ASC",
                (org_id,),
            )
            rows = cur.fetchall()
        return [_binding_from_row(row) for row in rows]

    async def get_binding_by_nonce(self, nonce: str) -> NonceBinding | None:
        return await asyncio.to_thread(self._get, nonce)

    async def save_binding(self, binding: NonceBinding) -> None:
        await asyncio.to_thread(self._save, binding)

    async def list_bindings(self, org_id: str) -> list[NonceBinding]:
        return await asyncio.to_thread(self._list, org_id)


# =============================================================================
# REPUTATIONS
# =============================================================================


class PostgresReputationStore(ReputationStore):
    def _get(self, org_id: str) -> OrganizationReputation | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM org_reputations WHERE org_id = %s", (org_id,))
            row = cur.fetchone()
        return _reputation_from_row(row) if row else None

    def _save(self, rep: OrganizationReputation) -> None:
        with get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO org_reputations (
                    org_id, base_reputation, stake_amount, stake_status,
                    consistency_score, age_score, volume_score,
                    contribution_count, flagged_count, slash_reason,
                    created_at, last_updated
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (org_id) DO UPDATE SET
                    base_reputation = EXCLUDED.base_reputation,
                    stake_amount = EXCLUDED.stake_amount,
                    stake_status = EXCLUDED.stake_status,
                    consistency_score = EXCLUDED.consistency_score,
                    age_score = EXCLUDED.age_score,
                    volume_score = EXCLUDED.volume_score,
                    contribution_count = EXCLUDED.contribution_count,
                    flagged_count = EXCLUDED.flagged_count,
                    slash_reason = EXCLUDED.slash_reason,
                    last_updated = EXCLUDED.last_updated
                """,
                (
                    rep.org_id,
                    rep.base_reputation,
                    rep.stake_amount,
                    rep.stake_status.value,
                    rep.consistency_score,
                    rep.age_score,
                    rep.volume_score,
                    rep.contribution_count,
                    rep.flagged_count,
                    rep.slash_reason,
                    rep.created_at,
                    rep.last_updated,
                ),
            )

    def _list(self) -> list[OrganizationReputation]:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM org_reputations ORDER BY org_id")
            rows = cur.fetchall()
        return [_reputation_from_row(row) for row in rows]

    async def get_reputation(self, org_id: str) -> OrganizationReputation | None:
        return await asyncio.to_thread(self._get, org_id)

    async def save_reputation(self, reputation: OrganizationReputation) -> None:
        await asyncio.to_thread(self._save, reputation)

    async def list_reputations(self) -> list[OrganizationReputation]:
        return await asyncio.to_thread(self._list)


# =============================================================================
# CONTRIBUTION RECORDS
# =============================================================================


class PostgresContributionStore(ContributionStore):
    def _add(self, record: ContributionRecord) -> None:
        with get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO contribution_records (
                    org_id, rule_id, contributed_fp_rate, consensus_fp_rate,
                    event_count, "timestamp", round_id
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record.org_id,
                    record.rule_id,
                    record.contributed_fp_rate,
                    record.consensus_fp_rate,
                    record.event_count,
                    record.timestamp,
                    record.round_id,
                ),
            )

    def _for_org(self, org_id: str, since: datetime | None) -> list[ContributionRecord]:
        with get_cursor() as cur:
            if since is not None:
                cur.execute(
                    """
                    SELECT * FROM contribution_records
                    WHERE org_id = %s AND "timestamp" >= %s
                    ORDER BY "timestamp" ASC
                    """,
                    (org_id, since),
                )
            else:
                cur.execute(
                    'SELECT * FROM contribution_records WHERE org_id = %s ORDER BY "timestamp" ASC',
                    (org_id,),
                )
            rows = cur.fetchall()
        return [_record_from_row(row) for row in rows]

    def _for_rule(self, rule_id: str) -> list[ContributionRecord]:
        with get_cursor() as cur:
            cur.execute(
                'SELECT * FROM contribution_records WHERE rule_id = %s ORDER BY "timestamp" ASC',
                (rule_id,),
            )
            rows = cur.fetchall()
        return [_record_from_row(row) for row in rows]

    async def add_record(self, record: ContributionRecord) -> None:
        await asyncio.to_thread(self._add, record)

    async def get_records_for_org(
        self,
        org_id: str,
        since: datetime | None = None,
    ) -> list[ContributionRecord]:
        return await asyncio.to_thread(self._for_org, org_id, since)

    async def get_records_for_rule(self, rule_id: str) -> list[ContributionRecord]:
        return await asyncio.to_thread(self._for_rule, rule_id)


# =============================================================================
# CALIBRATION RESULTS
# =============================================================================


class PostgresCalibrationResultStore(CalibrationResultStore):
    def _save(self, result: CalibrationResult) -> None:
        with get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO calibration_results (round_id, rule_id, calculated_at, payload)
                VALUES (%s, %s, %s, %s)
                """,
                (result.round_id, result.rule_id, result.calculated_at, Json(result.to_dict())),
            )

    def _latest(self, rule_id: str) -> CalibrationResult | None:
        with get_cursor() as cur:
            cur.execute(
                """
                SELECT payload FROM calibration_results
                WHERE rule_id = %s
                ORDER BY calculated_at DESC
                LIMIT 1
                """,
                (rule_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        payload = row["payload"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return CalibrationResult.from_dict(payload)

    async def save_result(self, result: CalibrationResult) -> None:
        await asyncio.to_thread(self._save, result)

    async def get_latest_result(self, rule_id: str) -> CalibrationResult | None:
        return await asyncio.to_thread(self._latest, rule_id)


# =============================================================================
# RAW CONTRIBUTIONS
# =============================================================================


class PostgresContributionSource(ContributionSource, ContributionSink):
    """Raw reports table; one row per (rule, organization), latest wins.

    ``round_id`` is NULL while a report is pending and set to the round that
    took it. A resubmission clears it again.
    """

    def _add(self, contribution: RawContribution) -> None:
        with get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO raw_contributions (rule_id, org_id, fp_rate, event_count, submitted_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (rule_id, org_id) DO UPDATE SET
                    fp_rate = EXCLUDED.fp_rate,
                    event_count = EXCLUDED.event_count,
                    submitted_at = EXCLUDED.submitted_at,
                    round_id = NULL
                """,
                (
                    contribution.rule_id,
                    contribution.org_id,
                    contribution.fp_rate,
                    contribution.event_count,
                    contribution.submitted_at,
                ),
            )

    def _get(self, rule_id: str) -> list[RawContribution]:
        with get_cursor() as cur:
            cur.execute(
                "SELECT * FROM raw_contributions WHERE rule_id = %s AND round_id IS NULL ORDER BY org_id",
                (rule_id,),
            )
            rows = cur.fetchall()
        return [_contribution_from_row(row) for row in rows]

    def _take(self, rule_id: str, round_id: str) -> list[RawContribution]:
        with get_cursor() as cur:
            cur.execute(
                """
                UPDATE raw_contributions SET round_id = %s
                WHERE rule_id = %s AND round_id IS NULL
                RETURNING rule_id, org_id, fp_rate, event_count, submitted_at
                """,
                (round_id, rule_id),
            )
            rows = cur.fetchall()
        return sorted((_contribution_from_row(row) for row in rows), key=lambda c: c.org_id)

    def _rule_ids(self) -> list[str]:
        with get_cursor() as cur:
            cur.execute("SELECT DISTINCT rule_id FROM raw_contributions WHERE round_id IS NULL ORDER BY rule_id")
            rows = cur.fetchall()
        return [row["rule_id"] for row in rows]

    async def add_contribution(self, contribution: RawContribution) -> None:
        await asyncio.to_thread(self._add, contribution)

    async def get_contributions(self, rule_id: str) -> list[RawContribution]:
        return await asyncio.to_thread(self._get, rule_id)

    async def take_contributions(self, rule_id: str, round_id: str) -> list[RawContribution]:
        return await asyncio.to_thread(self._take, rule_id, round_id)

    async def list_rule_ids(self) -> list[str]:
        return await asyncio.to_thread(self._rule_ids)
