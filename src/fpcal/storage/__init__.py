"""Storage interfaces and backends for the fpcal trust core."""

from __future__ import annotations

from .base import (
    CalibrationResultStore,
    ContributionSink,
    ContributionSource,
    ContributionStore,
    IdentityStore,
    NonceBindingStore,
    ReputationStore,
    TrustStores,
)
from .memory import (
    MemoryCalibrationResultStore,
    MemoryContributionSource,
    MemoryContributionStore,
    MemoryIdentityStore,
    MemoryNonceBindingStore,
    MemoryReputationStore,
)


def create_stores(use_memory: bool = False) -> TrustStores:
    """Build a complete set of stores.

    Args:
        use_memory: Use in-memory stores instead of PostgreSQL
    """
    if use_memory:
        return TrustStores(
            identities=MemoryIdentityStore(),
            bindings=MemoryNonceBindingStore(),
            reputations=MemoryReputationStore(),
            contributions=MemoryContributionStore(),
            results=MemoryCalibrationResultStore(),
            source=MemoryContributionSource(),
        )

    from .postgres import (
        PostgresCalibrationResultStore,
        PostgresContributionSource,
        PostgresContributionStore,
        PostgresIdentityStore,
        PostgresNonceBindingStore,
        PostgresReputationStore,
    )

    return TrustStores(
        identities=PostgresIdentityStore(),
        bindings=PostgresNonceBindingStore(),
        reputations=PostgresReputationStore(),
        contributions=PostgresContributionStore(),
        results=PostgresCalibrationResultStore(),
        source=PostgresContributionSource(),
    )


__all__ = [
    "IdentityStore",
    "NonceBindingStore",
    "ReputationStore",
    "ContributionStore",
    "CalibrationResultStore",
    "ContributionSource",
    "ContributionSink",
    "TrustStores",
    "MemoryIdentityStore",
    "MemoryNonceBindingStore",
    "MemoryReputationStore",
    "MemoryContributionStore",
    "MemoryCalibrationResultStore",
    "MemoryContributionSource",
    "create_stores",
]
