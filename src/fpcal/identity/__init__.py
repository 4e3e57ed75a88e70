"""Organization identity: verification, enrollment, nonce binding and revenue analytics."""

from .enrollment import IdentityEnrollmentService
from .models import (
    BindingOutcome,
    NonceBinding,
    NonceValidationResult,
    OrganizationIdentity,
    OrgMetadata,
    VerificationMethod,
    VerificationResult,
)
from .revenue import RevenueStats, RevenueTrackingService, RevenueVerifiedOrg
from .nonce_binding import (
    HmacNonceCodec,
    NonceBindingService,
    RandomNonceCodec,
    is_valid_public_key,
    sign_binding,
)
from .verifiers import (
    EvidenceSource,
    IdentityVerifier,
    PaymentVerifierConfig,
    RegistryVerifierConfig,
)

__all__ = [
    "VerificationMethod",
    "OrgMetadata",
    "VerificationResult",
    "OrganizationIdentity",
    "NonceBinding",
    "BindingOutcome",
    "NonceValidationResult",
    "EvidenceSource",
    "IdentityVerifier",
    "RegistryVerifierConfig",
    "PaymentVerifierConfig",
    "IdentityEnrollmentService",
    "NonceBindingService",
    "RandomNonceCodec",
    "HmacNonceCodec",
    "is_valid_public_key",
    "sign_binding",
    "RevenueTrackingService",
    "RevenueStats",
    "RevenueVerifiedOrg",
]
