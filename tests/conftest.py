"""Global test fixtures for the fpcal test suite."""

from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from fpcal.calibration.models import RawContribution
from fpcal.core.config import clear_settings_cache
from fpcal.reputation.models import ContributionRecord
from fpcal.storage import create_stores

# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all FPCAL_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("FPCAL_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop the settings singleton around each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Clock Fixtures
# ============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def clock(fixed_now):
    """A clock callable frozen at ``fixed_now``."""
    return lambda: fixed_now


# ============================================================================
# Identity Fixtures
# ============================================================================


@pytest.fixture
def public_key() -> str:
    return "ab" * 32


@pytest.fixture
def other_public_key() -> str:
    return "cd" * 32


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def stores():
    """A fresh set of in-memory stores."""
    return create_stores(use_memory=True)


@pytest.fixture
def mock_cursor():
    """Patch the postgres stores' get_cursor with a MagicMock cursor."""
    cursor = MagicMock()
    cursor.fetchone.return_value = None
    cursor.fetchall.return_value = []

    @contextmanager
    def fake_get_cursor():
        yield cursor

    with patch("fpcal.storage.postgres.get_cursor", fake_get_cursor):
        yield cursor


# ============================================================================
# Model Factory Fixtures
# ============================================================================


@pytest.fixture
def contribution_factory():
    """Factory for raw FP-rate contributions."""

    def factory(
        org_id: str,
        fp_rate: float,
        event_count: int = 20,
        rule_id: str = "rule-1",
    ) -> RawContribution:
        return RawContribution(
            org_id=org_id,
            rule_id=rule_id,
            fp_rate=fp_rate,
            event_count=event_count,
        )

    return factory


@pytest.fixture
def record_factory(fixed_now):
    """Factory for contribution records relative to ``fixed_now``."""

    def factory(
        contributed: float,
        consensus: float,
        age_days: float = 1.0,
        org_id: str = "org-a",
        rule_id: str = "rule-1",
        event_count: int = 10,
    ) -> ContributionRecord:
        return ContributionRecord(
            org_id=org_id,
            rule_id=rule_id,
            contributed_fp_rate=contributed,
            consensus_fp_rate=consensus,
            event_count=event_count,
            timestamp=fixed_now - timedelta(days=age_days),
        )

    return factory
