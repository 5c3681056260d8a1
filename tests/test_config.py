"""
Unit tests for configuration loading and validation.

Tests strict validation and unlimited-value handling for catalog configs.
"""

import os
import tempfile

import pytest
import yaml

from ai_tier_router.config.loader import (
    DEFAULT_CATALOG,
    CatalogConfig,
    RateLimitPolicy,
    RuntimeSettings,
    default_catalog_config,
    load_catalog_config,
    parse_catalog_config,
)
from ai_tier_router.core.errors import ConfigurationError


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "catalog.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self, test_config):
        """Test that a valid configuration loads correctly."""
        config = load_catalog_config(self._write_config(test_config))

        assert isinstance(config, CatalogConfig)
        assert set(config.tiers) == {"free", "premium"}
        free = config.tiers["free"]
        assert free.models["characterReply"] == "A"
        assert free.features["voiceGeneration"] is False
        assert free.rate_limits == RateLimitPolicy(requests_per_minute=5, max_tokens_per_request=1000)
        assert config.fallbacks["P"] == ("A", "B")
        assert config.settings.timezone == "UTC"
        assert config.settings.timeout_seconds == 5

    def test_default_yaml_round_trips(self):
        """The built-in table written as YAML loads to the same config."""
        config = load_catalog_config(self._write_config(DEFAULT_CATALOG))
        assert config == default_catalog_config()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_catalog_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, "w").close()
        with pytest.raises(ConfigurationError, match="empty"):
            load_catalog_config(path)

    def test_invalid_yaml(self):
        path = os.path.join(self.temp_dir, "broken.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("tiers: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_catalog_config(path)


class TestValidation:
    """Test strict validation of each section."""

    def test_unknown_top_level_key(self, test_config):
        test_config["budgets"] = {}
        with pytest.raises(ConfigurationError, match="Unknown keys in configuration"):
            parse_catalog_config(test_config)

    def test_missing_tiers(self, test_config):
        del test_config["tiers"]
        with pytest.raises(ConfigurationError, match="Missing required 'tiers'"):
            parse_catalog_config(test_config)

    def test_missing_rate_limits(self, test_config):
        del test_config["tiers"]["free"]["rate_limits"]
        with pytest.raises(ConfigurationError, match="rate_limits"):
            parse_catalog_config(test_config)

    def test_missing_limit_field(self, test_config):
        del test_config["tiers"]["free"]["rate_limits"]["max_tokens_per_request"]
        with pytest.raises(ConfigurationError, match="max_tokens_per_request"):
            parse_catalog_config(test_config)

    def test_unknown_tier_key(self, test_config):
        test_config["tiers"]["free"]["price"] = 0
        with pytest.raises(ConfigurationError, match="tiers.free"):
            parse_catalog_config(test_config)

    def test_feature_flag_must_be_bool(self, test_config):
        test_config["tiers"]["free"]["features"]["voiceGeneration"] = "no"
        with pytest.raises(ConfigurationError, match="voiceGeneration"):
            parse_catalog_config(test_config)

    def test_fallback_chain_must_be_list(self, test_config):
        test_config["fallbacks"]["A"] = "B"
        with pytest.raises(ConfigurationError, match="fallbacks.A"):
            parse_catalog_config(test_config)

    def test_unknown_timezone(self, test_config):
        test_config["settings"]["timezone"] = "Mars/Olympus_Mons"
        with pytest.raises(ConfigurationError, match="Unknown timezone"):
            parse_catalog_config(test_config)

    def test_non_positive_timeout(self, test_config):
        test_config["settings"]["timeout_seconds"] = 0
        with pytest.raises(ConfigurationError, match="timeout_seconds"):
            parse_catalog_config(test_config)

    def test_settings_default_when_absent(self, test_config):
        del test_config["settings"]
        config = parse_catalog_config(test_config)
        assert config.settings == RuntimeSettings()
        assert config.settings.max_attempts == 3
        assert config.settings.retry_delay_seconds == 1.0

    def test_retry_settings(self, test_config):
        test_config["settings"]["max_attempts"] = 4
        test_config["settings"]["retry_delay_seconds"] = 0.5
        config = parse_catalog_config(test_config)
        assert config.settings.max_attempts == 4
        assert config.settings.retry_delay_seconds == 0.5

    @pytest.mark.parametrize("value", [0, -1, 2.5])
    def test_invalid_max_attempts(self, test_config, value):
        test_config["settings"]["max_attempts"] = value
        with pytest.raises(ConfigurationError, match="max_attempts"):
            parse_catalog_config(test_config)

    def test_negative_retry_delay(self, test_config):
        test_config["settings"]["retry_delay_seconds"] = -1
        with pytest.raises(ConfigurationError, match="retry_delay_seconds"):
            parse_catalog_config(test_config)


class TestUnlimitedValues:
    """Test that unlimited is explicit and never confused with zero."""

    @pytest.mark.parametrize("value", [-1, None, "unlimited", "UNLIMITED"])
    def test_unlimited_spellings(self, test_config, value):
        test_config["tiers"]["free"]["rate_limits"]["requests_per_minute"] = value
        config = parse_catalog_config(test_config)
        assert config.tiers["free"].rate_limits.requests_per_minute is None

    def test_zero_is_a_real_limit(self, test_config):
        test_config["tiers"]["free"]["rate_limits"]["requests_per_minute"] = 0
        config = parse_catalog_config(test_config)
        assert config.tiers["free"].rate_limits.requests_per_minute == 0

    def test_other_negative_values_rejected(self, test_config):
        test_config["tiers"]["free"]["rate_limits"]["max_tokens_per_request"] = -5
        with pytest.raises(ConfigurationError, match="max_tokens_per_request"):
            parse_catalog_config(test_config)

    def test_non_integer_rejected(self, test_config):
        test_config["tiers"]["free"]["rate_limits"]["max_tokens_per_request"] = 1.5
        with pytest.raises(ConfigurationError):
            parse_catalog_config(test_config)

    def test_daily_chats_default_unlimited(self, test_config):
        config = parse_catalog_config(test_config)
        assert config.tiers["free"].max_daily_chats is None

    def test_default_catalog_matches_deployment(self):
        config = default_catalog_config()
        assert config.tiers["free"].rate_limits == RateLimitPolicy(5, 1000)
        assert config.tiers["premium"].rate_limits == RateLimitPolicy(30, 4000)
        assert config.tiers["free"].max_daily_chats is None
        assert config.settings.timezone == "Asia/Tokyo"
