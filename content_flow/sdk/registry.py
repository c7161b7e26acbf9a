"""
Provider registry.

Adapters are registered under a provider id; the orchestrator looks them up
by id. Adding a backend means implementing ProviderAdapter and registering
an instance, nothing else.

Supported kinds when building from configuration:

  openai      OpenAI or any OpenAI-compatible endpoint (base_url)
  anthropic   Anthropic Messages API
  google      Google Gemini (google-genai)
  mock        Built-in deterministic provider, no API key needed
"""

import logging
from typing import Callable, Dict, List

from ..config.loader import ContentFlowConfig, ProviderConfig
from ..core.errors import InvalidParameter
from .base import ProviderAdapter

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps provider ids to adapter instances."""

    def __init__(self) -> None:
        self._adapters: Dict[str, ProviderAdapter] = {}

    def register(self, provider_id: str, adapter: ProviderAdapter) -> None:
        if not provider_id:
            raise ValueError("provider_id is required and cannot be empty")
        if provider_id in self._adapters:
            raise ValueError(f"Provider '{provider_id}' is already registered")
        self._adapters[provider_id] = adapter

    def get(self, provider_id: str) -> ProviderAdapter:
        """Return the adapter for ``provider_id``.

        Raises:
            InvalidParameter: If no adapter is registered under that id
        """
        try:
            return self._adapters[provider_id]
        except KeyError:
            raise InvalidParameter(
                f"Unknown provider '{provider_id}'. Available: {', '.join(self.ids()) or 'none'}"
            ) from None

    def ids(self) -> List[str]:
        return sorted(self._adapters)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._adapters


def _build_openai(provider_id: str, config: ProviderConfig) -> ProviderAdapter:
    from .openai_client import OpenAIAdapter

    return OpenAIAdapter(
        provider_id=provider_id,
        api_key=config.resolve_api_key(),
        model=config.model,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        max_tokens_limit=config.max_tokens_limit,
    )


def _build_anthropic(provider_id: str, config: ProviderConfig) -> ProviderAdapter:
    from .anthropic_client import AnthropicAdapter

    return AnthropicAdapter(
        provider_id=provider_id,
        api_key=config.resolve_api_key(),
        model=config.model,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        max_tokens_limit=config.max_tokens_limit,
    )


def _build_google(provider_id: str, config: ProviderConfig) -> ProviderAdapter:
    from .google_client import GoogleAdapter

    return GoogleAdapter(
        provider_id=provider_id,
        api_key=config.resolve_api_key(),
        model=config.model,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        max_tokens_limit=config.max_tokens_limit,
    )


def _build_mock(provider_id: str, config: ProviderConfig) -> ProviderAdapter:
    from .mock_client import MockAdapter

    return MockAdapter(provider_id=provider_id)


_BUILDERS: Dict[str, Callable[[str, ProviderConfig], ProviderAdapter]] = {
    "openai": _build_openai,
    "anthropic": _build_anthropic,
    "google": _build_google,
    "mock": _build_mock,
}


def build_registry(config: ContentFlowConfig) -> ProviderRegistry:
    """Instantiate every configured provider.

    Raises:
        ValueError: If a provider is missing credentials
    """
    registry = ProviderRegistry()
    for provider_id, provider_config in config.providers.items():
        adapter = _BUILDERS[provider_config.kind](provider_id, provider_config)
        registry.register(provider_id, adapter)
        logger.info(
            "Provider registered: %s (kind=%s, model=%s)",
            provider_id,
            provider_config.kind,
            provider_config.model or "provider-default",
        )
    return registry
