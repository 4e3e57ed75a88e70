"""In-memory store implementations.

Used by tests and by ``create_stores(use_memory=True)``. Objects are copied
on the way in and out so callers cannot mutate stored state by accident.
"""

from __future__ import annotations

import copy
from datetime import datetime

from ..calibration.models import CalibrationResult, RawContribution
from ..core.exceptions import ConflictError
from ..identity.models import NonceBinding, OrganizationIdentity, VerificationMethod
from ..reputation.models import ContributionRecord, OrganizationReputation
from .base import (
    CalibrationResultStore,
    ContributionSink,
    ContributionSource,
    ContributionStore,
    IdentityStore,
    NonceBindingStore,
    ReputationStore,
)


class MemoryIdentityStore(IdentityStore):
    def __init__(self) -> None:
        self._by_org: dict[str, OrganizationIdentity] = {}
        # (method, reference_id) -> org_id
        self._by_reference: dict[tuple[str, str], str] = {}

    async def get_identity(self, org_id: str) -> OrganizationIdentity | None:
        identity = self._by_org.get(org_id)
        return copy.deepcopy(identity) if identity else None

    async def get_identity_by_reference(
        self,
        method: VerificationMethod,
        reference_id: str,
    ) -> OrganizationIdentity | None:
        org_id = self._by_reference.get((str(method), reference_id))
        return await self.get_identity(org_id) if org_id else None

    async def save_identity(self, identity: OrganizationIdentity) -> None:
        key = (str(identity.method), identity.provider_reference_id)
        holder = self._by_reference.get(key)
        if holder is not None and holder != identity.org_id:
            raise ConflictError(
                f"Reference {identity.provider_reference_id} already bound to another organization",
                existing_id=holder,
            )
        self._by_org[identity.org_id] = copy.deepcopy(identity)
        self._by_reference[key] = identity.org_id

    async def list_identities(self, method: VerificationMethod | None = None) -> list[OrganizationIdentity]:
        return [
            copy.deepcopy(self._by_org[org_id])
            for org_id in sorted(self._by_org)
            if method is None or self._by_org[org_id].method == method
        ]


class MemoryNonceBindingStore(NonceBindingStore):
    def __init__(self) -> None:
        self._bindings: dict[str, NonceBinding] = {}

    async def get_binding_by_nonce(self, nonce: str) -> NonceBinding | None:
        binding = self._bindings.get(nonce)
        return copy.deepcopy(binding) if binding else None

    async def save_binding(self, binding: NonceBinding) -> None:
        self._bindings[binding.nonce] = copy.deepcopy(binding)

    async def list_bindings(self, org_id: str) -> list[NonceBinding]:
        bindings = [copy.deepcopy(b) for b in self._bindings.values() if b.org_id == org_id]
        return sorted(bindings, key=lambda b: b.created_at)


class MemoryReputationStore(ReputationStore):
    def __init__(self) -> None:
        self._reputations: dict[str, OrganizationReputation] = {}

    async def get_reputation(self, org_id: str) -> OrganizationReputation | None:
        reputation = self._reputations.get(org_id)
        return copy.deepcopy(reputation) if reputation else None

    async def save_reputation(self, reputation: OrganizationReputation) -> None:
        self._reputations[reputation.org_id] = copy.deepcopy(reputation)

    async def list_reputations(self) -> list[OrganizationReputation]:
        return [copy.deepcopy(r) for r in self._reputations.values()]


class MemoryContributionStore(ContributionStore):
    def __init__(self) -> None:
        self._records: list[ContributionRecord] = []

    async def add_record(self, record: ContributionRecord) -> None:
        self._records.append(record)

    async def get_records_for_org(
        self,
        org_id: str,
        since: datetime | None = None,
    ) -> list[ContributionRecord]:
        return [
            r for r in self._records
            if r.org_id == org_id and (since is None or r.timestamp >= since)
        ]

    async def get_records_for_rule(self, rule_id: str) -> list[ContributionRecord]:
        return [r for r in self._records if r.rule_id == rule_id]


class MemoryCalibrationResultStore(CalibrationResultStore):
    def __init__(self) -> None:
        self._results: dict[str, list[CalibrationResult]] = {}

    async def save_result(self, result: CalibrationResult) -> None:
        self._results.setdefault(result.rule_id, []).append(copy.deepcopy(result))

    async def get_latest_result(self, rule_id: str) -> CalibrationResult | None:
        history = self._results.get(rule_id)
        if not history:
            return None
        return copy.deepcopy(max(history, key=lambda r: r.calculated_at))


class MemoryContributionSource(ContributionSource, ContributionSink):
    """Keeps the latest pending raw report per (rule, organization)."""

    def __init__(self, contributions: list[RawContribution] | None = None) -> None:
        self._pending: dict[str, dict[str, RawContribution]] = {}
        for contribution in contributions or []:
            self._put(contribution)

    def _put(self, contribution: RawContribution) -> None:
        self._pending.setdefault(contribution.rule_id, {})[contribution.org_id] = contribution

    async def add_contribution(self, contribution: RawContribution) -> None:
        self._put(contribution)

    async def get_contributions(self, rule_id: str) -> list[RawContribution]:
        return list(self._pending.get(rule_id, {}).values())

    async def take_contributions(self, rule_id: str, round_id: str) -> list[RawContribution]:
        return list(self._pending.pop(rule_id, {}).values())

    async def list_rule_ids(self) -> list[str]:
        return sorted(self._pending)
