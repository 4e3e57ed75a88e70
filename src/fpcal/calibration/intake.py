"""Contribution intake: the gate between FP ingestion and calibration.

A report is accepted only with the organization's valid nonce. Accepted
reports count against the nonce's usage and are handed to the contribution
sink read by the aggregator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..identity.nonce_binding import NonceBindingService
from .models import RawContribution

if TYPE_CHECKING:
    from ..storage.base import ContributionSink

logger = logging.getLogger(__name__)


@dataclass
class IntakeDecision:
    accepted: bool
    reason: str | None = None
    contribution: RawContribution | None = None


class ContributionIntake:
    def __init__(self, nonces: NonceBindingService, sink: ContributionSink):
        self.nonces = nonces
        self.sink = sink

    async def submit(
        self,
        org_id: str,
        nonce: str,
        rule_id: str,
        fp_rate: float,
        event_count: int,
    ) -> IntakeDecision:
        """Validate and accept one FP-rate report."""
        if not 0.0 <= fp_rate <= 1.0:
            return IntakeDecision(False, f"FP rate {fp_rate} outside [0, 1]")
        if event_count < 0:
            return IntakeDecision(False, f"Event count {event_count} is negative")

        check = await self.nonces.validate(org_id, nonce)
        if not check.valid:
            logger.info(f"Rejected contribution from {org_id} for {rule_id}: {check.reason}")
            return IntakeDecision(False, check.reason)

        await self.nonces.record_usage(org_id, nonce)
        contribution = RawContribution(
            org_id=org_id,
            rule_id=rule_id,
            fp_rate=fp_rate,
            event_count=event_count,
        )
        await self.sink.add_contribution(contribution)
        return IntakeDecision(True, None, contribution)
