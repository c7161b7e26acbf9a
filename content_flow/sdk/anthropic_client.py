"""
Anthropic Messages API provider adapter.
"""

import os
from typing import Any, Optional

import anthropic
from anthropic import Anthropic

from ..core.errors import (
    ProviderAuthError,
    ProviderContentPolicyError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
)
from ..core.prompts import build_messages
from ..core.requests import NormalizedRequest, ProviderResult, content_metadata
from ..core.token_counter import TokenUsage
from .base import ProviderAdapter

DEFAULT_MODEL = "claude-3-haiku-20240307"
SUPPORTED_MODELS = ("claude-3-5-sonnet-20241022", "claude-3-haiku-20240307")

# The Messages API samples in [0, 1]; normalized requests allow up to 2.
ANTHROPIC_MAX_TEMPERATURE = 1.0


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Claude adapter.

    Reads ANTHROPIC_API_KEY when no key is configured.
    """

    def __init__(
        self,
        provider_id: str = "anthropic",
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = 60.0,
        max_tokens_limit: int = 4000,
        client: Any = None
    ):
        self.provider_id = provider_id
        self.model = model or DEFAULT_MODEL
        self.max_tokens_limit = max_tokens_limit

        if client is not None:
            self.client = client
            return

        resolved_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not resolved_key:
            raise ValueError(
                f"An API key is required for provider '{provider_id}'. "
                "Set api_key in the config or ANTHROPIC_API_KEY in the environment."
            )
        self.client = Anthropic(
            api_key=resolved_key,
            base_url=base_url or None,
            timeout=timeout_seconds,
            max_retries=0,
        )

    def _send(self, request: NormalizedRequest) -> ProviderResult:
        params = request.parameters
        model = params.model or self.model
        system, user = build_messages(request)

        try:
            response = self.client.messages.create(
                model=model,
                max_tokens=params.max_tokens,
                temperature=min(params.temperature, ANTHROPIC_MAX_TEMPERATURE),
                system=system["content"],
                messages=[user],
            )
        except anthropic.AnthropicError as e:
            raise map_anthropic_error(e, self.provider_id) from e

        content = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )
        usage = response.usage
        token_usage = TokenUsage(
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0
        )

        if response.stop_reason == "refusal":
            raise ProviderContentPolicyError(
                "Model refused to produce the content",
                provider_id=self.provider_id,
                tokens_used=token_usage.total_tokens,
            )

        metadata = content_metadata(content)
        metadata.update({
            "request_id": getattr(response, "id", None),
            "stop_reason": response.stop_reason,
        })

        return ProviderResult(
            content=content,
            token_usage=token_usage,
            model=getattr(response, "model", None) or model,
            provider_id=self.provider_id,
            raw_metadata=metadata,
        )


def map_anthropic_error(error: Exception, provider_id: str) -> ProviderError:
    """Translate an anthropic SDK exception into the provider error hierarchy."""
    message = str(error)

    if isinstance(error, anthropic.APIConnectionError):
        return ProviderTransientError(message, provider_id=provider_id)
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ProviderAuthError(message, provider_id=provider_id)
    if isinstance(error, anthropic.RateLimitError):
        retry_after = None
        header = error.response.headers.get("retry-after") if error.response is not None else None
        if header is not None:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        return ProviderRateLimitError(message, provider_id=provider_id, retry_after=retry_after)
    if isinstance(error, anthropic.APIStatusError) and error.status_code >= 500:
        # Includes 529 "overloaded".
        return ProviderTransientError(message, provider_id=provider_id)
    return ProviderError(message, provider_id=provider_id)
