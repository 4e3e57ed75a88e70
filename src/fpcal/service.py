"""Wiring for a complete trust core.

Usage:
    core = TrustCore(use_memory=True, configure_logs=True)
    await core.enrollment.enroll(org_id, VerificationMethod.REGISTRY, "acme-corp", public_key)
    outcome = await core.nonces.generate_and_bind(org_id, public_key)
    await core.intake.submit(org_id, outcome.binding.nonce, "rule-42", 0.12, 40)
    result = await core.aggregator.calibrate("rule-42")
"""

from __future__ import annotations

import logging

from .calibration.aggregator import CalibrationAggregator
from .calibration.byzantine import ByzantineFilter, ByzantineFilterConfig
from .calibration.intake import ContributionIntake
from .core.config import TrustSettings, get_settings
from .core.locking import OrgLockRegistry
from .core.logging import configure_logging
from .identity.enrollment import IdentityEnrollmentService
from .identity.nonce_binding import HmacNonceCodec, NonceBindingService, RandomNonceCodec
from .identity.revenue import RevenueTrackingService
from .identity.verifiers import IdentityVerifier
from .reputation.consistency import ConsistencyConfig, ConsistencyScoreCalculator
from .reputation.engine import ReputationConfig, ReputationEngine
from .storage import TrustStores, create_stores

logger = logging.getLogger(__name__)


class TrustCore:
    """All trust-core services over one set of stores."""

    def __init__(
        self,
        use_memory: bool = False,
        settings: TrustSettings | None = None,
        stores: TrustStores | None = None,
        verifiers: list[IdentityVerifier] | None = None,
        configure_logs: bool = False,
    ):
        self.settings = settings or get_settings()
        if configure_logs:
            configure_logging(settings=self.settings)
        self.stores = stores or create_stores(use_memory=use_memory)
        locks = OrgLockRegistry()

        codec = (
            HmacNonceCodec(self.settings.nonce_hmac_secret)
            if self.settings.nonce_hmac_secret
            else RandomNonceCodec()
        )
        self.enrollment = IdentityEnrollmentService(self.stores.identities, verifiers or [], locks=locks)
        self.nonces = NonceBindingService(self.stores.identities, self.stores.bindings, codec=codec, locks=locks)
        self.engine = ReputationEngine(
            self.stores.reputations,
            config=ReputationConfig.from_settings(self.settings),
            calculator=ConsistencyScoreCalculator(ConsistencyConfig.from_settings(self.settings)),
            locks=locks,
        )
        self.aggregator = CalibrationAggregator(
            self.stores.source,
            self.engine,
            self.stores.contributions,
            self.stores.results,
            byzantine_filter=ByzantineFilter(ByzantineFilterConfig.from_settings(self.settings)),
            max_concurrency=self.settings.calibration_max_concurrency,
        )
        self.intake = ContributionIntake(self.nonces, self.stores.source)
        self.revenue = RevenueTrackingService(self.stores.identities)
        logger.debug(f"Trust core ready (memory={use_memory})")
