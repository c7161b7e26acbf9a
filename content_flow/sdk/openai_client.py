"""
OpenAI-compatible provider adapter.

Works with any API that speaks the OpenAI Chat Completions protocol; point
``base_url`` at another endpoint (local servers, gateways) to reuse it.
"""

import os
from typing import Any, Optional

import openai
from openai import OpenAI

from ..core.errors import (
    ProviderAuthError,
    ProviderContentPolicyError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
)
from ..core.prompts import build_messages
from ..core.requests import NormalizedRequest, ProviderResult, content_metadata
from ..core.token_counter import TokenUsage, estimate_tokens
from .base import ProviderAdapter

DEFAULT_MODEL = "gpt-3.5-turbo"
SUPPORTED_MODELS = ("gpt-4", "gpt-3.5-turbo")


class OpenAIAdapter(ProviderAdapter):
    """OpenAI Chat Completions adapter.

    The SDK client is created with ``max_retries=0``: retrying is the
    orchestrator's job, and SDK-level retries would multiply attempts.
    """

    def __init__(
        self,
        provider_id: str = "openai",
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = 60.0,
        max_tokens_limit: int = 4000,
        client: Any = None
    ):
        """Initialize the adapter.

        Args:
            provider_id: Registry id this adapter answers to
            api_key: API key; falls back to OPENAI_API_KEY
            model: Default model when the request does not name one
            base_url: Alternative OpenAI-compatible endpoint
            timeout_seconds: Per-call timeout
            max_tokens_limit: Highest max_tokens this backend accepts
            client: Pre-built client (tests inject a mock here)

        Raises:
            ValueError: If no API key can be resolved
        """
        self.provider_id = provider_id
        self.model = model or DEFAULT_MODEL
        self.max_tokens_limit = max_tokens_limit

        if client is not None:
            self.client = client
            return

        resolved_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        if not resolved_key:
            raise ValueError(
                f"An API key is required for provider '{provider_id}'. "
                "Set api_key in the config or OPENAI_API_KEY in the environment."
            )
        self.client = OpenAI(
            api_key=resolved_key,
            base_url=base_url or None,
            timeout=timeout_seconds,
            max_retries=0,
        )

    def _send(self, request: NormalizedRequest) -> ProviderResult:
        params = request.parameters
        model = params.model or self.model

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=build_messages(request),
                temperature=params.temperature,
                max_tokens=params.max_tokens,
            )
        except openai.OpenAIError as e:
            raise map_openai_error(e, self.provider_id) from e

        choice = response.choices[0]
        content = choice.message.content or ""
        usage = response.usage

        if usage:
            token_usage = TokenUsage(
                input_tokens=usage.prompt_tokens,
                output_tokens=usage.completion_tokens
            )
        else:
            token_usage = TokenUsage(
                input_tokens=estimate_tokens(request.prompt_or_content),
                output_tokens=estimate_tokens(content)
            )

        if choice.finish_reason == "content_filter":
            raise ProviderContentPolicyError(
                "Response was withheld by the content filter",
                provider_id=self.provider_id,
                tokens_used=token_usage.total_tokens,
            )

        metadata = content_metadata(content)
        metadata.update({
            "request_id": getattr(response, "id", None),
            "finish_reason": choice.finish_reason,
        })

        return ProviderResult(
            content=content,
            token_usage=token_usage,
            model=getattr(response, "model", None) or model,
            provider_id=self.provider_id,
            raw_metadata=metadata,
        )


def map_openai_error(error: Exception, provider_id: str) -> ProviderError:
    """Translate an openai SDK exception into the provider error hierarchy."""
    message = str(error)

    # APITimeoutError subclasses APIConnectionError; both are transient.
    if isinstance(error, openai.APIConnectionError):
        return ProviderTransientError(message, provider_id=provider_id)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthError(message, provider_id=provider_id)
    if isinstance(error, openai.RateLimitError):
        return ProviderRateLimitError(
            message,
            provider_id=provider_id,
            retry_after=_retry_after(error),
        )
    if isinstance(error, openai.BadRequestError) and getattr(error, "code", None) == "content_policy_violation":
        return ProviderContentPolicyError(message, provider_id=provider_id)
    if isinstance(error, openai.InternalServerError):
        return ProviderTransientError(message, provider_id=provider_id)
    if isinstance(error, openai.APIStatusError) and error.status_code >= 500:
        return ProviderTransientError(message, provider_id=provider_id)
    return ProviderError(message, provider_id=provider_id)


def _retry_after(error: Any) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
