"""
Deterministic mock provider for development, demos and tests.

Always returns the same output for the same request, so the whole
generate/review pipeline runs without network calls.
"""

import hashlib

from ..core.prompts import build_messages
from ..core.requests import NormalizedRequest, Operation, ProviderResult, content_metadata
from ..core.token_counter import TokenUsage, estimate_tokens
from .base import ProviderAdapter

MOCK_MODEL = "mock-deterministic"


class MockAdapter(ProviderAdapter):

    def __init__(self, provider_id: str = "mock"):
        self.provider_id = provider_id
        self.call_count = 0

    def _send(self, request: NormalizedRequest) -> ProviderResult:
        self.call_count += 1
        messages = build_messages(request)
        prompt_hash = hashlib.sha256(messages[1]["content"].encode()).hexdigest()

        if request.operation == Operation.IMPROVE:
            content = f"{request.prompt_or_content.strip()} (improved)"
        else:
            content = (
                f"Generated content for: {request.prompt_or_content.strip()} "
                f"[{prompt_hash[:12]}]"
            )

        token_usage = TokenUsage(
            input_tokens=sum(estimate_tokens(m["content"]) for m in messages),
            output_tokens=estimate_tokens(content)
        )
        metadata = content_metadata(content)
        metadata.update({"prompt_hash": prompt_hash, "confidence": 0.9})

        return ProviderResult(
            content=content,
            token_usage=token_usage,
            model=request.parameters.model or MOCK_MODEL,
            provider_id=self.provider_id,
            raw_metadata=metadata,
        )
