"""Tests for fpcal.reputation.models."""

from __future__ import annotations

import dataclasses

import pytest

from fpcal.reputation.models import (
    ContributionRecord,
    OrganizationReputation,
    StakeStatus,
    clamp01,
)


class TestClamp:
    @pytest.mark.parametrize("value,expected", [(-1.0, 0.0), (0.3, 0.3), (2.0, 1.0)])
    def test_clamp01(self, value, expected):
        assert clamp01(value) == expected


class TestOrganizationReputation:
    def test_defaults(self):
        rep = OrganizationReputation("org-a")

        assert rep.base_reputation == 0.5
        assert rep.consistency_score == 0.5
        assert rep.stake_status == StakeStatus.ACTIVE
        assert rep.has_active_stake is False

    def test_scores_clamped_on_creation(self):
        rep = OrganizationReputation("org-a", base_reputation=3.0, consistency_score=-1.0)
        assert rep.base_reputation == 1.0
        assert rep.consistency_score == 0.0

    def test_has_active_stake(self):
        assert OrganizationReputation("org-a", stake_amount=10).has_active_stake
        assert not OrganizationReputation("org-a", stake_amount=10, stake_status=StakeStatus.SLASHED).has_active_stake

    def test_dict_round_trip(self):
        rep = OrganizationReputation(
            "org-a",
            base_reputation=0.7,
            stake_amount=1500,
            stake_status=StakeStatus.WITHDRAWN,
            flagged_count=2,
        )
        assert OrganizationReputation.from_dict(rep.to_dict()) == rep


class TestContributionRecord:
    def test_deviation_and_consistency(self):
        record = ContributionRecord("org-a", "rule-1", 0.25, 0.1, 40)

        assert record.deviation == pytest.approx(0.15)
        assert record.consistency == pytest.approx(0.85)

    def test_immutable(self):
        record = ContributionRecord("org-a", "rule-1", 0.25, 0.1, 40)
        with pytest.raises(dataclasses.FrozenInstanceError):
            record.contributed_fp_rate = 0.5

    def test_to_dict_includes_derived(self):
        data = ContributionRecord("org-a", "rule-1", 0.3, 0.1, 40, round_id="r-1").to_dict()

        assert data["deviation"] == pytest.approx(0.2)
        assert data["round_id"] == "r-1"
        assert ContributionRecord.from_dict(data).contributed_fp_rate == 0.3
