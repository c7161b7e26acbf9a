"""
Configuration management and loading.

The core never reads global settings: a ContentFlowConfig is built once
(from YAML or a dict) and passed to every component at construction time.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

PROVIDER_KINDS = {"openai", "anthropic", "google", "mock"}


class CacheBackendKind(Enum):
    """Where cached provider results live."""
    MEMORY = "memory"
    REDIS = "redis"
    SQLITE = "sqlite"


class LedgerBackendKind(Enum):
    """Where usage windows live."""
    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one AI backend."""
    kind: str
    model: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    timeout_seconds: float = 60.0
    max_tokens_limit: int = 4000

    def __post_init__(self):
        """Validate provider values."""
        if self.kind not in PROVIDER_KINDS:
            raise ValueError(f"provider kind must be one of: {sorted(PROVIDER_KINDS)}")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if not 1 <= self.max_tokens_limit <= 4000:
            raise ValueError("max_tokens_limit must be between 1 and 4000")

    def resolve_api_key(self) -> Optional[str]:
        """API key from the config file first, then from the named env var."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env) or None
        return None


@dataclass(frozen=True)
class CacheConfig:
    """Result cache settings."""
    enabled: bool = True
    ttl_seconds: int = 3600
    backend: CacheBackendKind = CacheBackendKind.MEMORY
    redis_url: Optional[str] = None

    def __post_init__(self):
        """Validate cache values."""
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if self.backend == CacheBackendKind.REDIS and not self.redis_url:
            raise ValueError("redis_url is required for the redis cache backend")


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-subject quotas. A limit of None disables that dimension."""
    requests_per_window: Optional[int] = 10
    window_seconds: int = 60
    daily_token_cap: Optional[int] = 100000
    charge_failed_calls: bool = False
    fail_open: bool = True
    backend: LedgerBackendKind = LedgerBackendKind.MEMORY

    def __post_init__(self):
        """Validate rate limit values."""
        if self.requests_per_window is not None and self.requests_per_window <= 0:
            raise ValueError("requests_per_window must be > 0")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.daily_token_cap is not None and self.daily_token_cap <= 0:
            raise ValueError("daily_token_cap must be > 0")


@dataclass(frozen=True)
class ContentFlowConfig:
    """Complete content-flow configuration."""
    providers: Dict[str, ProviderConfig]
    default_provider: str
    fallback_provider: Optional[str] = None
    max_retries: int = 2
    retry_backoff_seconds: float = 0.5
    database_path: str = "content_flow.db"
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)

    def __post_init__(self):
        """Validate cross-references between sections."""
        if self.default_provider not in self.providers:
            raise ValueError(f"default_provider '{self.default_provider}' is not configured")
        if self.fallback_provider is not None and self.fallback_provider not in self.providers:
            raise ValueError(f"fallback_provider '{self.fallback_provider}' is not configured")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")


def default_config(database_path: str = "content_flow.db") -> ContentFlowConfig:
    """A network-free configuration using the mock provider."""
    return ContentFlowConfig(
        providers={"mock": ProviderConfig(kind="mock")},
        default_provider="mock",
        database_path=database_path,
    )


def load_config(path: str) -> ContentFlowConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations, such as a typo
    in a quota key silently disabling a limit.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ContentFlowConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")

    return config_from_dict(raw_config)


def config_from_dict(raw_config: Dict[str, Any]) -> ContentFlowConfig:
    """Build a validated config from already-parsed data.

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {
        'providers', 'default_provider', 'fallback_provider', 'max_retries',
        'retry_backoff_seconds', 'database_path', 'cache', 'rate_limits'
    }
    _reject_unknown(raw_config, allowed_top_keys, "configuration")

    # Parse and validate providers
    if 'providers' not in raw_config:
        raise ValueError("Missing required 'providers' section")
    providers_data = raw_config['providers']
    if not isinstance(providers_data, dict) or not providers_data:
        raise ValueError("'providers' must be a non-empty dictionary")

    providers = {}
    for provider_id, provider_data in providers_data.items():
        if not isinstance(provider_data, dict):
            raise ValueError(f"Provider '{provider_id}' must be a dictionary")
        providers[provider_id] = _parse_provider_config(provider_data, f"providers.{provider_id}")

    if 'default_provider' not in raw_config:
        raise ValueError("Missing required 'default_provider'")

    max_retries = raw_config.get('max_retries', 2)
    if isinstance(max_retries, bool) or not isinstance(max_retries, int):
        raise ValueError("'max_retries' must be an integer")

    backoff = raw_config.get('retry_backoff_seconds', 0.5)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)):
        raise ValueError("'retry_backoff_seconds' must be a number")

    return ContentFlowConfig(
        providers=providers,
        default_provider=str(raw_config['default_provider']),
        fallback_provider=raw_config.get('fallback_provider'),
        max_retries=max_retries,
        retry_backoff_seconds=float(backoff),
        database_path=str(raw_config.get('database_path', "content_flow.db")),
        cache=_parse_cache_config(raw_config.get('cache', {})),
        rate_limits=_parse_rate_limit_config(raw_config.get('rate_limits', {})),
    )


def _reject_unknown(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_provider_config(data: Dict, path: str) -> ProviderConfig:
    """Parse and validate one provider entry.

    Args:
        data: Provider configuration data
        path: Path for error messages

    Returns:
        Validated ProviderConfig

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {
        'kind', 'model', 'api_key', 'api_key_env', 'base_url',
        'timeout_seconds', 'max_tokens_limit'
    }
    _reject_unknown(data, allowed_keys, path)

    if 'kind' not in data:
        raise ValueError(f"Missing required 'kind' in {path}")
    kind = data['kind']
    if not isinstance(kind, str) or kind.lower() not in PROVIDER_KINDS:
        raise ValueError(f"'kind' in {path} must be one of: {sorted(PROVIDER_KINDS)}")

    timeout = data.get('timeout_seconds', 60.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError(f"'timeout_seconds' in {path} must be > 0")

    max_tokens_limit = data.get('max_tokens_limit', 4000)
    if isinstance(max_tokens_limit, bool) or not isinstance(max_tokens_limit, int):
        raise ValueError(f"'max_tokens_limit' in {path} must be an integer")

    return ProviderConfig(
        kind=kind.lower(),
        model=data.get('model'),
        api_key=data.get('api_key'),
        api_key_env=data.get('api_key_env'),
        base_url=data.get('base_url'),
        timeout_seconds=float(timeout),
        max_tokens_limit=max_tokens_limit,
    )


def _parse_cache_config(data: Dict) -> CacheConfig:
    if not isinstance(data, dict):
        raise ValueError("'cache' must be a dictionary")
    _reject_unknown(data, {'enabled', 'ttl_seconds', 'backend', 'redis_url'}, "cache")

    enabled = data.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError("'enabled' in cache must be a boolean")

    ttl = data.get('ttl_seconds', 3600)
    if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
        raise ValueError("'ttl_seconds' in cache must be a positive integer")

    backend_str = data.get('backend', CacheBackendKind.MEMORY.value)
    try:
        backend = CacheBackendKind(str(backend_str).lower())
    except ValueError:
        valid = [kind.value for kind in CacheBackendKind]
        raise ValueError(f"'backend' in cache must be one of: {valid}")

    return CacheConfig(
        enabled=enabled,
        ttl_seconds=ttl,
        backend=backend,
        redis_url=data.get('redis_url') or os.environ.get("REDIS_URL"),
    )


def _parse_rate_limit_config(data: Dict) -> RateLimitConfig:
    if not isinstance(data, dict):
        raise ValueError("'rate_limits' must be a dictionary")
    allowed_keys = {
        'requests_per_window', 'window_seconds', 'daily_token_cap',
        'charge_failed_calls', 'fail_open', 'backend'
    }
    _reject_unknown(data, allowed_keys, "rate_limits")

    for key in ('requests_per_window', 'daily_token_cap'):
        value = data.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValueError(f"'{key}' in rate_limits must be an integer or null")

    window = data.get('window_seconds', 60)
    if isinstance(window, bool) or not isinstance(window, int):
        raise ValueError("'window_seconds' in rate_limits must be an integer")

    for key in ('charge_failed_calls', 'fail_open'):
        if key in data and not isinstance(data[key], bool):
            raise ValueError(f"'{key}' in rate_limits must be a boolean")

    backend_str = data.get('backend', LedgerBackendKind.MEMORY.value)
    try:
        backend = LedgerBackendKind(str(backend_str).lower())
    except ValueError:
        valid = [kind.value for kind in LedgerBackendKind]
        raise ValueError(f"'backend' in rate_limits must be one of: {valid}")

    return RateLimitConfig(
        requests_per_window=data.get('requests_per_window', 10),
        window_seconds=window,
        daily_token_cap=data.get('daily_token_cap', 100000),
        charge_failed_calls=data.get('charge_failed_calls', False),
        fail_open=data.get('fail_open', True),
        backend=backend,
    )
