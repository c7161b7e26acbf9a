"""
Google Gemini provider adapter.

Every call asks Gemini to block harassment, hate speech, sexually explicit
and dangerous content at medium probability and above. A blocked prompt or
a response stopped by those filters is reported as a content policy error.
"""

import os
from typing import Any, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

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

DEFAULT_MODEL = "gemini-1.5-pro"
SUPPORTED_MODELS = ("gemini-1.5-pro", "gemini-1.5-flash", "gemini-pro")
API_KEY_ENV_VARS = ("GOOGLE_API_KEY", "GEMINI_API_KEY")

SAFETY_SETTINGS = [
    types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE)
    for category in (
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]

_POLICY_FINISH_REASONS = {
    types.FinishReason.SAFETY,
    types.FinishReason.PROHIBITED_CONTENT,
    types.FinishReason.BLOCKLIST,
}


class GoogleAdapter(ProviderAdapter):
    """Gemini adapter on the google-genai SDK.

    Reads GOOGLE_API_KEY, then GEMINI_API_KEY, when no key is configured.
    """

    def __init__(
        self,
        provider_id: str = "google",
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

        resolved_key = api_key or next(
            (os.environ[name] for name in API_KEY_ENV_VARS if os.environ.get(name)), ""
        )
        if not resolved_key:
            raise ValueError(
                f"An API key is required for provider '{provider_id}'. "
                "Set api_key in the config or GOOGLE_API_KEY in the environment."
            )
        self.client = genai.Client(
            api_key=resolved_key,
            http_options=types.HttpOptions(
                base_url=base_url or None,
                timeout=int(timeout_seconds * 1000),
            ),
        )

    def _send(self, request: NormalizedRequest) -> ProviderResult:
        params = request.parameters
        model = params.model or self.model
        system, user = build_messages(request)

        try:
            response = self.client.models.generate_content(
                model=model,
                contents=user["content"],
                config=types.GenerateContentConfig(
                    system_instruction=system["content"],
                    temperature=params.temperature,
                    max_output_tokens=params.max_tokens,
                    safety_settings=SAFETY_SETTINGS,
                ),
            )
        except genai_errors.APIError as e:
            raise map_google_error(e, self.provider_id) from e
        except httpx.TransportError as e:
            # Connection failures and timeouts surface from the HTTP layer unwrapped.
            raise ProviderTransientError(str(e), provider_id=self.provider_id) from e

        candidate = response.candidates[0] if response.candidates else None
        parts = candidate.content.parts if candidate and candidate.content and candidate.content.parts else []
        content = "".join(part.text for part in parts if part.text)

        usage = response.usage_metadata
        if usage:
            token_usage = TokenUsage(
                input_tokens=usage.prompt_token_count or 0,
                output_tokens=usage.candidates_token_count or 0
            )
        else:
            token_usage = TokenUsage(
                input_tokens=estimate_tokens(request.prompt_or_content),
                output_tokens=estimate_tokens(content)
            )

        feedback = response.prompt_feedback
        if feedback is not None and feedback.block_reason:
            raise ProviderContentPolicyError(
                f"Prompt blocked by safety settings ({feedback.block_reason})",
                provider_id=self.provider_id,
                tokens_used=token_usage.total_tokens,
            )
        if candidate is None:
            raise ProviderError("No content generated", provider_id=self.provider_id)
        if candidate.finish_reason in _POLICY_FINISH_REASONS:
            raise ProviderContentPolicyError(
                "Content filtered by safety settings",
                provider_id=self.provider_id,
                tokens_used=token_usage.total_tokens,
            )

        finish_reason = candidate.finish_reason
        metadata = content_metadata(content)
        metadata.update({
            "request_id": getattr(response, "response_id", None),
            "finish_reason": getattr(finish_reason, "value", finish_reason),
        })

        return ProviderResult(
            content=content,
            token_usage=token_usage,
            model=getattr(response, "model_version", None) or model,
            provider_id=self.provider_id,
            raw_metadata=metadata,
        )


def map_google_error(error: genai_errors.APIError, provider_id: str) -> ProviderError:
    """Translate a google-genai API error into the provider error hierarchy."""
    message = str(error)
    code = error.code or 0

    # An invalid key comes back as 400 INVALID_ARGUMENT, not 401.
    if code in (401, 403) or (code == 400 and "api key" in message.lower()):
        return ProviderAuthError(message, provider_id=provider_id)
    if code == 429:
        return ProviderRateLimitError(message, provider_id=provider_id)
    if code == 408 or code >= 500:
        return ProviderTransientError(message, provider_id=provider_id)
    return ProviderError(message, provider_id=provider_id)
