"""Core configuration - centralized config for the fpcal package.

All environment-based configuration should flow through this module.
Every tunable of the trust core can be overridden per deployment with an
``FPCAL_`` environment variable (or a ``.env`` file).

Usage:
    from fpcal.core.config import get_settings
    settings = get_settings()

    # Access settings
    threshold = settings.outlier_z_threshold
    log_level = settings.log_level
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TrustSettings(BaseSettings):
    """Configuration settings for the fpcal trust core.

    Component configs (verifier, reputation, consistency, Byzantine filter)
    are plain dataclasses; each offers ``from_settings()`` to build itself
    from an instance of this class.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # DATABASE SETTINGS
    # ==========================================================================

    db_host: str = Field(
        default="localhost",
        description="Database host",
        validation_alias="FPCAL_DB_HOST",
    )
    db_port: int = Field(
        default=5432,
        description="Database port",
        validation_alias="FPCAL_DB_PORT",
    )
    db_name: str = Field(
        default="fpcal",
        description="Database name",
        validation_alias="FPCAL_DB_NAME",
    )
    db_user: str = Field(
        default="fpcal",
        description="Database user",
        validation_alias="FPCAL_DB_USER",
    )
    db_password: str = Field(
        default="",
        description="Database password",
        validation_alias="FPCAL_DB_PASSWORD",
    )

    # Connection pool settings
    db_pool_min: int = Field(
        default=1,
        description="Minimum pool connections",
        validation_alias="FPCAL_DB_POOL_MIN",
    )
    db_pool_max: int = Field(
        default=10,
        description="Maximum pool connections",
        validation_alias="FPCAL_DB_POOL_MAX",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="FPCAL_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="FPCAL_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="FPCAL_LOG_FILE",
    )

    # ==========================================================================
    # IDENTITY PROVIDER SETTINGS
    # ==========================================================================

    registry_api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the code-hosting registry API",
        validation_alias="FPCAL_REGISTRY_API_URL",
    )
    registry_token: str = Field(
        default="",
        description="API token for the code-hosting registry",
        validation_alias="FPCAL_REGISTRY_TOKEN",
    )
    payment_api_url: str = Field(
        default="https://api.stripe.com/v1",
        description="Base URL of the payment processor API",
        validation_alias="FPCAL_PAYMENT_API_URL",
    )
    payment_api_key: str = Field(
        default="",
        description="Secret key for the payment processor",
        validation_alias="FPCAL_PAYMENT_API_KEY",
    )
    verifier_timeout_seconds: float = Field(
        default=10.0,
        description="Total timeout for a single provider request",
        validation_alias="FPCAL_VERIFIER_TIMEOUT_SECONDS",
    )
    verifier_max_retries: int = Field(
        default=3,
        description="Attempts per provider request on transient errors",
        validation_alias="FPCAL_VERIFIER_MAX_RETRIES",
    )
    verifier_retry_backoff_seconds: float = Field(
        default=0.5,
        description="Initial backoff between retries (doubles per attempt)",
        validation_alias="FPCAL_VERIFIER_RETRY_BACKOFF_SECONDS",
    )

    # Registry-backed verification thresholds
    registry_min_age_days: int = Field(
        default=90,
        description="Minimum registry organization age in days",
        validation_alias="FPCAL_REGISTRY_MIN_AGE_DAYS",
    )
    registry_min_member_count: int = Field(
        default=3,
        description="Minimum registry organization member count",
        validation_alias="FPCAL_REGISTRY_MIN_MEMBER_COUNT",
    )
    registry_min_public_signals: int = Field(
        default=1,
        description="Minimum number of public repositories",
        validation_alias="FPCAL_REGISTRY_MIN_PUBLIC_SIGNALS",
    )
    registry_recent_activity_days: int = Field(
        default=180,
        description="Window in days in which registry activity counts as recent",
        validation_alias="FPCAL_REGISTRY_RECENT_ACTIVITY_DAYS",
    )
    registry_allow_private_fallback: bool = Field(
        default=True,
        description="Let organizations without public repositories pass on age and members alone",
        validation_alias="FPCAL_REGISTRY_ALLOW_PRIVATE_FALLBACK",
    )
    registry_require_good_standing: bool = Field(
        default=False,
        description="Reject registry organizations not reported in good standing",
        validation_alias="FPCAL_REGISTRY_REQUIRE_GOOD_STANDING",
    )

    # Payment-backed verification thresholds
    payment_min_age_days: int = Field(
        default=30,
        description="Minimum payment customer age in days",
        validation_alias="FPCAL_PAYMENT_MIN_AGE_DAYS",
    )
    payment_min_successful_payments: int = Field(
        default=1,
        description="Minimum number of successful payments",
        validation_alias="FPCAL_PAYMENT_MIN_SUCCESSFUL_PAYMENTS",
    )
    payment_require_active_subscription: bool = Field(
        default=False,
        description="Require an active subscription",
        validation_alias="FPCAL_PAYMENT_REQUIRE_ACTIVE_SUBSCRIPTION",
    )
    payment_reject_delinquent: bool = Field(
        default=True,
        description="Reject customers with an overdue balance",
        validation_alias="FPCAL_PAYMENT_REJECT_DELINQUENT",
    )
    payment_require_business_verification: bool = Field(
        default=False,
        description="Require a company customer with a registered tax id",
        validation_alias="FPCAL_PAYMENT_REQUIRE_BUSINESS_VERIFICATION",
    )

    # ==========================================================================
    # NONCE SETTINGS
    # ==========================================================================

    nonce_hmac_secret: str = Field(
        default="",
        description="Secret for HMAC-signed nonce tokens ('' uses random tokens)",
        validation_alias="FPCAL_NONCE_HMAC_SECRET",
    )

    # ==========================================================================
    # REPUTATION SETTINGS
    # ==========================================================================

    new_entrant_reputation: float = Field(
        default=0.1,
        description="Base reputation assumed for organizations with no record",
        validation_alias="FPCAL_NEW_ENTRANT_REPUTATION",
    )
    stake_reference_amount: float = Field(
        default=1000.0,
        description="Stake at which the stake multiplier saturates",
        validation_alias="FPCAL_STAKE_REFERENCE_AMOUNT",
    )
    stake_multiplier_cap: float = Field(
        default=1.0,
        description="Maximum stake multiplier",
        validation_alias="FPCAL_STAKE_MULTIPLIER_CAP",
    )
    consistency_bonus_cap: float = Field(
        default=0.2,
        description="Maximum consistency bonus (and penalty)",
        validation_alias="FPCAL_CONSISTENCY_BONUS_CAP",
    )
    min_stake_for_participation: float = Field(
        default=1000.0,
        description="Minimum active stake for network participation",
        validation_alias="FPCAL_MIN_STAKE_FOR_PARTICIPATION",
    )

    # ==========================================================================
    # CONSISTENCY SETTINGS
    # ==========================================================================

    consistency_decay_rate: float = Field(
        default=0.01,
        description="Exponential time-decay rate per day",
        validation_alias="FPCAL_CONSISTENCY_DECAY_RATE",
    )
    consistency_max_age_days: int = Field(
        default=180,
        description="Contributions older than this are ignored",
        validation_alias="FPCAL_CONSISTENCY_MAX_AGE_DAYS",
    )
    consistency_min_contributions: int = Field(
        default=3,
        description="Contributions required before the score leaves 0.5",
        validation_alias="FPCAL_CONSISTENCY_MIN_CONTRIBUTIONS",
    )
    consistency_outlier_threshold: float = Field(
        default=0.3,
        description="Deviation above which a contribution is an outlier",
        validation_alias="FPCAL_CONSISTENCY_OUTLIER_THRESHOLD",
    )
    consistency_min_event_count: int = Field(
        default=1,
        description="Contributions backed by fewer events are ignored",
        validation_alias="FPCAL_CONSISTENCY_MIN_EVENT_COUNT",
    )
    consistency_exclude_outliers: bool = Field(
        default=False,
        description="Drop outlier contributions from the score (strict mode)",
        validation_alias="FPCAL_CONSISTENCY_EXCLUDE_OUTLIERS",
    )

    # ==========================================================================
    # BYZANTINE FILTER SETTINGS
    # ==========================================================================

    min_reputation: float = Field(
        default=0.1,
        description="Base reputation floor for contributors",
        validation_alias="FPCAL_MIN_REPUTATION",
    )
    require_stake: bool = Field(
        default=False,
        description="Exclude contributors without stake",
        validation_alias="FPCAL_REQUIRE_STAKE",
    )
    outlier_z_threshold: float = Field(
        default=3.0,
        description="Absolute Z-score above which a rate is an outlier",
        validation_alias="FPCAL_OUTLIER_Z_THRESHOLD",
    )
    min_contributors_for_outlier_filter: int = Field(
        default=5,
        description="Survivors required before Z-score filtering runs",
        validation_alias="FPCAL_MIN_CONTRIBUTORS_FOR_OUTLIER_FILTER",
    )
    byzantine_filter_percentile: float = Field(
        default=0.2,
        description="Bottom fraction by weight excluded from consensus",
        validation_alias="FPCAL_BYZANTINE_FILTER_PERCENTILE",
    )

    # ==========================================================================
    # CALIBRATION SETTINGS
    # ==========================================================================

    calibration_max_concurrency: int = Field(
        default=8,
        description="Rules calibrated in parallel by batch operations",
        validation_alias="FPCAL_CALIBRATION_MAX_CONCURRENCY",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def connection_params(self) -> dict:
        """Get database connection parameters dict."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }

    @property
    def pool_config(self) -> dict:
        """Get connection pool configuration."""
        return {
            "minconn": self.db_pool_min,
            "maxconn": self.db_pool_max,
        }


# ==========================================================================
# GLOBAL SETTINGS INSTANCE (lazy loaded)
# ==========================================================================

_settings: TrustSettings | None = None


def get_settings() -> TrustSettings:
    """Get the global settings instance.

    Returns:
        The singleton TrustSettings instance.
    """
    global _settings
    if _settings is None:
        _settings = TrustSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    global _settings
    _settings = None
