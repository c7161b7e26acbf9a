"""
Normalized request and result types.

Every provider adapter consumes a NormalizedRequest and produces a
ProviderResult, whatever the backend's own wire shape looks like.
"""

import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidParameter
from .token_counter import TokenUsage

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0
MAX_TOKENS_LIMIT = 4000
DEFAULT_MODEL = ""  # empty means "provider default"
WORDS_PER_MINUTE = 200


class Operation(Enum):
    """What the caller wants the provider to do with the text."""
    GENERATE = "generate"
    IMPROVE = "improve"


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling parameters shared by all providers.

    ``extra`` is copied on construction and exposed read-only, so a request
    and its cache fingerprint cannot change after the fact.
    """
    temperature: float = 0.7
    max_tokens: int = 1000
    model: str = DEFAULT_MODEL
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "extra", MappingProxyType(copy.deepcopy(dict(self.extra))))

    def to_dict(self) -> Dict[str, Any]:
        # 1 and 1.0 are the same temperature and must serialize the same way
        temperature = self.temperature
        if isinstance(temperature, (int, float)) and not isinstance(temperature, bool):
            temperature = float(temperature)
        return {
            "temperature": temperature,
            "max_tokens": self.max_tokens,
            "model": self.model,
            "extra": copy.deepcopy(dict(self.extra)),
        }


@dataclass(frozen=True)
class NormalizedRequest:
    """A provider-independent generate or improve request."""
    operation: Operation
    prompt_or_content: str
    parameters: GenerationParameters = field(default_factory=GenerationParameters)
    provider_hint: Optional[str] = None

    @classmethod
    def generate(
        cls,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        model: str = DEFAULT_MODEL,
        provider_hint: Optional[str] = None,
        **extra: Any
    ) -> "NormalizedRequest":
        return cls(
            operation=Operation.GENERATE,
            prompt_or_content=prompt,
            parameters=GenerationParameters(
                temperature=temperature,
                max_tokens=max_tokens,
                model=model,
                extra=extra,
            ),
            provider_hint=provider_hint,
        )

    @classmethod
    def improve(
        cls,
        content: str,
        improvement_type: str = "style",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        model: str = DEFAULT_MODEL,
        provider_hint: Optional[str] = None,
        **extra: Any
    ) -> "NormalizedRequest":
        extra["improvement_type"] = improvement_type
        return cls(
            operation=Operation.IMPROVE,
            prompt_or_content=content,
            parameters=GenerationParameters(
                temperature=temperature,
                max_tokens=max_tokens,
                model=model,
                extra=extra,
            ),
            provider_hint=provider_hint,
        )


@dataclass(frozen=True)
class ProviderResult:
    """Normalized output of exactly one provider call."""
    content: str
    token_usage: TokenUsage
    model: str
    provider_id: str
    raw_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "token_usage": self.token_usage.to_dict(),
            "model": self.model,
            "provider_id": self.provider_id,
            "raw_metadata": dict(self.raw_metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderResult":
        return cls(
            content=data["content"],
            token_usage=TokenUsage.from_dict(data.get("token_usage", {})),
            model=data.get("model", ""),
            provider_id=data.get("provider_id", ""),
            raw_metadata=dict(data.get("raw_metadata") or {}),
        )


def validate_request(
    request: NormalizedRequest,
    max_tokens_limit: int = MAX_TOKENS_LIMIT,
    max_temperature: float = MAX_TEMPERATURE
) -> None:
    """Check a request against the limits every provider shares.

    Args:
        request: Request to validate
        max_tokens_limit: Upper bound for max_tokens (adapters may lower it)
        max_temperature: Upper bound for temperature (adapters may lower it)

    Raises:
        InvalidParameter: If any field is out of range
    """
    if not isinstance(request.operation, Operation):
        raise InvalidParameter(f"Unknown operation: {request.operation!r}")

    text = request.prompt_or_content
    if not isinstance(text, str) or not text.strip():
        raise InvalidParameter("prompt_or_content is required and cannot be empty")

    params = request.parameters
    temperature = params.temperature
    if (isinstance(temperature, bool) or not isinstance(temperature, (int, float))
            or math.isnan(temperature)):
        raise InvalidParameter("temperature must be a number")
    if not MIN_TEMPERATURE <= temperature <= max_temperature:
        raise InvalidParameter(
            f"temperature must be between {MIN_TEMPERATURE} and {max_temperature}, got {temperature}"
        )

    max_tokens = params.max_tokens
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int):
        raise InvalidParameter("max_tokens must be an integer")
    if not 1 <= max_tokens <= max_tokens_limit:
        raise InvalidParameter(
            f"max_tokens must be between 1 and {max_tokens_limit}, got {max_tokens}"
        )


def content_metadata(content: str) -> Dict[str, Any]:
    """Word count and reading time attached to every provider result."""
    word_count = len(content.split())
    return {
        "word_count": word_count,
        "estimated_reading_time": math.ceil(word_count / WORDS_PER_MINUTE),
    }
