"""fpcal core - configuration, errors, logging and shared primitives."""

from .config import TrustSettings, clear_settings_cache, get_settings
from .exceptions import (
    ConfigException,
    ConflictError,
    DatabaseException,
    FpcalException,
    InvariantViolation,
    NotFoundError,
    RateLimitError,
    ValidationException,
    VerifierAuthError,
    VerifierInfrastructureError,
)
from .locking import OrgLockRegistry
from .logging import (
    configure_logging,
    correlation_context,
    get_correlation_id,
)

__all__ = [
    "TrustSettings",
    "get_settings",
    "clear_settings_cache",
    "FpcalException",
    "DatabaseException",
    "ValidationException",
    "ConfigException",
    "NotFoundError",
    "ConflictError",
    "InvariantViolation",
    "VerifierInfrastructureError",
    "RateLimitError",
    "VerifierAuthError",
    "OrgLockRegistry",
    "configure_logging",
    "correlation_context",
    "get_correlation_id",
]
