"""Storage interfaces for the trust core.

Every service receives its stores explicitly. Two backends ship with the
package: in-memory (tests, demos) and PostgreSQL.

Timestamps are stored and returned with microsecond precision.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from ..calibration.models import CalibrationResult, RawContribution
from ..identity.models import NonceBinding, OrganizationIdentity, VerificationMethod
from ..reputation.models import ContributionRecord, OrganizationReputation


class IdentityStore(ABC):
    """Organization identities, keyed by org id and by provider reference."""

    @abstractmethod
    async def get_identity(self, org_id: str) -> OrganizationIdentity | None:
        pass

    @abstractmethod
    async def get_identity_by_reference(
        self,
        method: VerificationMethod,
        reference_id: str,
    ) -> OrganizationIdentity | None:
        pass

    @abstractmethod
    async def save_identity(self, identity: OrganizationIdentity) -> None:
        """Insert or update an identity.

        Raises:
            ConflictError: If the provider reference is already held by
                another organization.
        """
        pass

    @abstractmethod
    async def list_identities(self, method: VerificationMethod | None = None) -> list[OrganizationIdentity]:
        """All identities, optionally only those verified via ``method``, ordered by org id."""
        pass


class NonceBindingStore(ABC):
    """Nonce bindings, current and historical. Never deleted."""

    @abstractmethod
    async def get_binding_by_nonce(self, nonce: str) -> NonceBinding | None:
        pass

    @abstractmethod
    async def save_binding(self, binding: NonceBinding) -> None:
        """Insert or update a binding, keyed by nonce."""
        pass

    @abstractmethod
    async def list_bindings(self, org_id: str) -> list[NonceBinding]:
        """All bindings ever created for ``org_id``, oldest first."""
        pass


class ReputationStore(ABC):
    @abstractmethod
    async def get_reputation(self, org_id: str) -> OrganizationReputation | None:
        pass

    @abstractmethod
    async def save_reputation(self, reputation: OrganizationReputation) -> None:
        pass

    @abstractmethod
    async def list_reputations(self) -> list[OrganizationReputation]:
        pass


class ContributionStore(ABC):
    """Append-only log of per-round contribution records."""

    @abstractmethod
    async def add_record(self, record: ContributionRecord) -> None:
        pass

    @abstractmethod
    async def get_records_for_org(
        self,
        org_id: str,
        since: datetime | None = None,
    ) -> list[ContributionRecord]:
        pass

    @abstractmethod
    async def get_records_for_rule(self, rule_id: str) -> list[ContributionRecord]:
        pass


class CalibrationResultStore(ABC):
    @abstractmethod
    async def save_result(self, result: CalibrationResult) -> None:
        pass

    @abstractmethod
    async def get_latest_result(self, rule_id: str) -> CalibrationResult | None:
        pass


class ContributionSource(ABC):
    """Where the aggregator reads the pending raw reports of a rule.

    A report is pending until a calibration round takes it. Each report is
    handed to exactly one round; a resubmission makes the organization
    pending again.
    """

    @abstractmethod
    async def get_contributions(self, rule_id: str) -> list[RawContribution]:
        """Pending reports for ``rule_id``, latest per organization. Does not consume."""
        pass

    @abstractmethod
    async def take_contributions(self, rule_id: str, round_id: str) -> list[RawContribution]:
        """Consume the pending reports for ``rule_id`` on behalf of ``round_id``."""
        pass

    @abstractmethod
    async def list_rule_ids(self) -> list[str]:
        """Rules with at least one pending report."""
        pass


class ContributionSink(ABC):
    """Where ingestion hands over accepted raw reports."""

    @abstractmethod
    async def add_contribution(self, contribution: RawContribution) -> None:
        pass


@dataclass
class TrustStores:
    """The full set of stores a deployment wires together."""

    identities: IdentityStore
    bindings: NonceBindingStore
    reputations: ReputationStore
    contributions: ContributionStore
    results: CalibrationResultStore
    source: ContributionSource
