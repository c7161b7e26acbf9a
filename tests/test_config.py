"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for content-flow configs.
"""

import os
import tempfile

import pytest
import yaml

from content_flow.config.loader import (
    CacheBackendKind,
    ContentFlowConfig,
    LedgerBackendKind,
    ProviderConfig,
    config_from_dict,
    default_config,
    load_config,
)


def _valid_config() -> dict:
    return {
        "database_path": "flow.db",
        "default_provider": "primary",
        "fallback_provider": "backup",
        "max_retries": 3,
        "retry_backoff_seconds": 0.25,
        "providers": {
            "primary": {"kind": "openai", "model": "gpt-4", "api_key_env": "TEST_OPENAI_KEY"},
            "backup": {"kind": "anthropic", "api_key": "sk-ant-test", "timeout_seconds": 30},
        },
        "cache": {"enabled": True, "ttl_seconds": 600, "backend": "sqlite"},
        "rate_limits": {
            "requests_per_window": 5,
            "window_seconds": 30,
            "daily_token_cap": None,
            "charge_failed_calls": True,
            "backend": "sqlite",
        },
    }


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config = load_config(self._write_config(_valid_config()))

        assert config.database_path == "flow.db"
        assert config.default_provider == "primary"
        assert config.fallback_provider == "backup"
        assert config.max_retries == 3
        assert config.retry_backoff_seconds == 0.25

        assert config.providers["primary"].kind == "openai"
        assert config.providers["primary"].model == "gpt-4"
        assert config.providers["backup"].timeout_seconds == 30.0

        assert config.cache.ttl_seconds == 600
        assert config.cache.backend == CacheBackendKind.SQLITE

        assert config.rate_limits.requests_per_window == 5
        assert config.rate_limits.daily_token_cap is None
        assert config.rate_limits.charge_failed_calls is True
        assert config.rate_limits.fail_open is True
        assert config.rate_limits.backend == LedgerBackendKind.SQLITE

    def test_optional_sections_use_defaults(self):
        """Test that cache and rate_limits sections are optional."""
        config = load_config(self._write_config({
            "default_provider": "mock",
            "providers": {"mock": {"kind": "mock"}},
        }))

        assert config.max_retries == 2
        assert config.fallback_provider is None
        assert config.cache.enabled is True
        assert config.cache.backend == CacheBackendKind.MEMORY
        assert config.rate_limits.requests_per_window == 10
        assert config.rate_limits.window_seconds == 60
        assert config.rate_limits.daily_token_cap == 100000
        assert config.rate_limits.charge_failed_calls is False

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config("nonexistent.yaml")

    def test_empty_config_raises_error(self):
        """Test that empty config file raises error."""
        config_path = self._write_config({})

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_config(config_path)

    def test_missing_providers_raises_error(self):
        """Test that a config without providers is rejected."""
        with pytest.raises(ValueError, match="Missing required 'providers' section"):
            config_from_dict({"default_provider": "mock"})

    def test_unknown_default_provider_raises_error(self):
        """Test that default_provider must name a configured provider."""
        data = _valid_config()
        data["default_provider"] = "nope"

        with pytest.raises(ValueError, match="default_provider 'nope' is not configured"):
            config_from_dict(data)

    def test_unknown_fallback_provider_raises_error(self):
        """Test that fallback_provider must name a configured provider."""
        data = _valid_config()
        data["fallback_provider"] = "nope"

        with pytest.raises(ValueError, match="fallback_provider 'nope' is not configured"):
            config_from_dict(data)

    def test_unknown_top_level_key_raises_error(self):
        """Test that unknown keys are rejected rather than ignored."""
        data = _valid_config()
        data["retries"] = 5

        with pytest.raises(ValueError, match="Unknown keys in configuration"):
            config_from_dict(data)

    def test_typo_in_rate_limits_raises_error(self):
        """Test that a misspelled quota key cannot silently disable a limit."""
        data = _valid_config()
        data["rate_limits"] = {"requests_per_minute": 5}

        with pytest.raises(ValueError, match="Unknown keys in rate_limits"):
            config_from_dict(data)

    def test_unknown_provider_kind_raises_error(self):
        """Test that provider kinds are validated."""
        data = _valid_config()
        data["providers"]["primary"]["kind"] = "bard"

        with pytest.raises(ValueError, match="'kind' in providers.primary must be one of"):
            config_from_dict(data)

    def test_invalid_cache_backend_raises_error(self):
        """Test that cache backend names are validated."""
        data = _valid_config()
        data["cache"]["backend"] = "memcached"

        with pytest.raises(ValueError, match="'backend' in cache must be one of"):
            config_from_dict(data)

    def test_redis_backend_requires_url(self, monkeypatch):
        """Test that the redis backend needs a URL from the file or REDIS_URL."""
        monkeypatch.delenv("REDIS_URL", raising=False)
        data = _valid_config()
        data["cache"] = {"backend": "redis"}

        with pytest.raises(ValueError, match="redis_url is required"):
            config_from_dict(data)

        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        config = config_from_dict(data)
        assert config.cache.redis_url == "redis://cache:6379/1"

    def test_non_positive_limits_raise_error(self):
        """Test that zero or negative quota values are rejected."""
        data = _valid_config()
        data["rate_limits"] = {"requests_per_window": 0}

        with pytest.raises(ValueError, match="requests_per_window must be > 0"):
            config_from_dict(data)

    def test_boolean_is_not_accepted_as_number(self):
        """Test that YAML booleans don't pass as integers."""
        data = _valid_config()
        data["max_retries"] = True

        with pytest.raises(ValueError, match="'max_retries' must be an integer"):
            config_from_dict(data)

    def test_negative_max_retries_raises_error(self):
        """Test that max_retries cannot be negative."""
        data = _valid_config()
        data["max_retries"] = -1

        with pytest.raises(ValueError, match="max_retries must be >= 0"):
            config_from_dict(data)

    def test_max_tokens_limit_bounded(self):
        """Test that a provider cannot raise max_tokens above the shared limit."""
        data = _valid_config()
        data["providers"]["primary"]["max_tokens_limit"] = 8000

        with pytest.raises(ValueError, match="max_tokens_limit must be between 1 and 4000"):
            config_from_dict(data)


class TestProviderConfig:
    """Test provider-level helpers."""

    def test_api_key_from_file_wins(self, monkeypatch):
        monkeypatch.setenv("TEST_OPENAI_KEY", "from-env")
        config = ProviderConfig(kind="openai", api_key="from-file", api_key_env="TEST_OPENAI_KEY")

        assert config.resolve_api_key() == "from-file"

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("TEST_OPENAI_KEY", "from-env")
        config = ProviderConfig(kind="openai", api_key_env="TEST_OPENAI_KEY")

        assert config.resolve_api_key() == "from-env"

    def test_missing_api_key_resolves_to_none(self, monkeypatch):
        monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)
        config = ProviderConfig(kind="openai", api_key_env="TEST_OPENAI_KEY")

        assert config.resolve_api_key() is None


class TestDefaultConfig:
    """Test the network-free default configuration."""

    def test_default_config_uses_mock_provider(self):
        config = default_config("test.db")

        assert isinstance(config, ContentFlowConfig)
        assert config.default_provider == "mock"
        assert config.providers["mock"].kind == "mock"
        assert config.database_path == "test.db"
