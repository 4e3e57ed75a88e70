"""Tests for fpcal.core.config - TrustSettings and global settings management.

Tests cover:
- Settings loading with defaults
- Environment variable overrides
- Singleton behavior (get_settings / clear_settings_cache)
- Computed properties (connection_params, pool_config)
- Component configs built from settings
"""

from __future__ import annotations

from fpcal.calibration.byzantine import ByzantineFilterConfig
from fpcal.core.config import TrustSettings, clear_settings_cache, get_settings
from fpcal.identity.verifiers import PaymentVerifierConfig, RegistryVerifierConfig
from fpcal.reputation.consistency import ConsistencyConfig
from fpcal.reputation.engine import ReputationConfig

# ============================================================================
# Defaults
# ============================================================================


class TestTrustSettingsDefaults:
    """Test that TrustSettings loads with correct default values."""

    def test_database_defaults(self, clean_env):
        settings = TrustSettings()

        assert settings.db_host == "localhost"
        assert settings.db_port == 5432
        assert settings.db_name == "fpcal"
        assert settings.db_user == "fpcal"
        assert settings.db_password == ""
        assert settings.db_pool_min == 1
        assert settings.db_pool_max == 10

    def test_logging_defaults(self, clean_env):
        settings = TrustSettings()

        assert settings.log_level == "INFO"
        assert settings.log_format == ""
        assert settings.log_file is None

    def test_verifier_defaults(self, clean_env):
        settings = TrustSettings()

        assert settings.registry_min_age_days == 90
        assert settings.registry_min_member_count == 3
        assert settings.payment_min_age_days == 30
        assert settings.payment_min_successful_payments == 1
        assert settings.payment_require_active_subscription is False
        assert settings.verifier_max_retries == 3
        assert settings.registry_allow_private_fallback is True
        assert settings.registry_require_good_standing is False
        assert settings.payment_reject_delinquent is True
        assert settings.payment_require_business_verification is False

    def test_reputation_defaults(self, clean_env):
        settings = TrustSettings()

        assert settings.new_entrant_reputation == 0.1
        assert settings.stake_reference_amount == 1000.0
        assert settings.stake_multiplier_cap == 1.0
        assert settings.consistency_bonus_cap == 0.2

    def test_filter_defaults(self, clean_env):
        settings = TrustSettings()

        assert settings.min_reputation == 0.1
        assert settings.require_stake is False
        assert settings.outlier_z_threshold == 3.0
        assert settings.min_contributors_for_outlier_filter == 5
        assert settings.byzantine_filter_percentile == 0.2

    def test_nonce_secret_empty_by_default(self, clean_env):
        assert TrustSettings().nonce_hmac_secret == ""


# ============================================================================
# Environment Overrides
# ============================================================================


class TestEnvironmentOverrides:
    def test_database_override(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_DB_HOST", "db.internal")
        monkeypatch.setenv("FPCAL_DB_PORT", "6543")

        settings = TrustSettings()

        assert settings.db_host == "db.internal"
        assert settings.db_port == 6543

    def test_threshold_override(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_OUTLIER_Z_THRESHOLD", "2.0")
        monkeypatch.setenv("FPCAL_REQUIRE_STAKE", "true")

        settings = TrustSettings()

        assert settings.outlier_z_threshold == 2.0
        assert settings.require_stake is True

    def test_consistency_override(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_CONSISTENCY_EXCLUDE_OUTLIERS", "1")
        monkeypatch.setenv("FPCAL_CONSISTENCY_MAX_AGE_DAYS", "30")

        settings = TrustSettings()

        assert settings.consistency_exclude_outliers is True
        assert settings.consistency_max_age_days == 30


# ============================================================================
# Singleton
# ============================================================================


class TestSingleton:
    def test_get_settings_returns_same_instance(self, clean_env):
        assert get_settings() is get_settings()

    def test_clear_cache_reloads(self, clean_env, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("FPCAL_LOG_LEVEL", "DEBUG")
        clear_settings_cache()

        second = get_settings()

        assert second is not first
        assert second.log_level == "DEBUG"


# ============================================================================
# Computed Properties
# ============================================================================


class TestComputedProperties:
    def test_connection_params(self, clean_env):
        params = TrustSettings().connection_params

        assert params == {
            "host": "localhost",
            "port": 5432,
            "dbname": "fpcal",
            "user": "fpcal",
            "password": "",
        }

    def test_pool_config(self, clean_env):
        assert TrustSettings().pool_config == {"minconn": 1, "maxconn": 10}


# ============================================================================
# Component Configs
# ============================================================================


class TestComponentConfigs:
    def test_filter_config_from_settings(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_BYZANTINE_FILTER_PERCENTILE", "0.1")
        config = ByzantineFilterConfig.from_settings(TrustSettings())

        assert config.percentile == 0.1
        assert config.z_score_threshold == 3.0

    def test_reputation_config_from_settings(self, clean_env):
        config = ReputationConfig.from_settings(TrustSettings())
        assert config == ReputationConfig()

    def test_consistency_config_from_settings(self, clean_env):
        config = ConsistencyConfig.from_settings(TrustSettings())

        assert config.decay_rate == 0.01
        assert config.max_age_days == 180
        assert config.min_contributions == 3

    def test_verifier_configs_from_settings(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_REGISTRY_MIN_MEMBER_COUNT", "5")
        settings = TrustSettings()

        assert RegistryVerifierConfig.from_settings(settings).min_member_count == 5
        assert PaymentVerifierConfig.from_settings(settings) == PaymentVerifierConfig()

    def test_defaults_match_component_defaults(self, clean_env):
        settings = TrustSettings()

        assert RegistryVerifierConfig.from_settings(settings) == RegistryVerifierConfig()
        assert ConsistencyConfig.from_settings(settings) == ConsistencyConfig()

    def test_registry_policy_flags(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_REGISTRY_ALLOW_PRIVATE_FALLBACK", "false")
        monkeypatch.setenv("FPCAL_REGISTRY_REQUIRE_GOOD_STANDING", "true")

        config = RegistryVerifierConfig.from_settings(TrustSettings())

        assert config.allow_private_fallback is False
        assert config.require_good_standing is True

    def test_payment_policy_flags(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_PAYMENT_REJECT_DELINQUENT", "false")
        monkeypatch.setenv("FPCAL_PAYMENT_REQUIRE_BUSINESS_VERIFICATION", "true")

        config = PaymentVerifierConfig.from_settings(TrustSettings())

        assert config.reject_delinquent is False
        assert config.require_business_verification is True

    def test_consistency_min_event_count(self, clean_env, monkeypatch):
        monkeypatch.setenv("FPCAL_CONSISTENCY_MIN_EVENT_COUNT", "25")

        assert ConsistencyConfig.from_settings(TrustSettings()).min_event_count == 25
