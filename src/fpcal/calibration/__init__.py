"""Calibration: Byzantine filtering, weighted consensus and calibration rounds."""

from .aggregator import CalibrationAggregator
from .byzantine import ByzantineFilter, ByzantineFilterConfig
from .intake import ContributionIntake, IntakeDecision
from .models import (
    CalibrationConfidence,
    CalibrationResult,
    ConfidenceCategory,
    ConfidenceFactors,
    FilteredContributor,
    FilterReason,
    FilterResult,
    FilterStatistics,
    FilterSummary,
    RawContribution,
    TrustedContributor,
)

__all__ = [
    "CalibrationAggregator",
    "ByzantineFilter",
    "ByzantineFilterConfig",
    "ContributionIntake",
    "IntakeDecision",
    "CalibrationConfidence",
    "CalibrationResult",
    "ConfidenceCategory",
    "ConfidenceFactors",
    "FilteredContributor",
    "FilterReason",
    "FilterResult",
    "FilterStatistics",
    "FilterSummary",
    "RawContribution",
    "TrustedContributor",
]
