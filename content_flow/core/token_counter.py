"""
Token counting and usage tracking.

Normalizes the token counts that every provider reports in its own shape.
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by a provider for one call.

    Contains exact token counts without estimation or model-specific logic.
    """
    input_tokens: int
    output_tokens: int

    def __post_init__(self):
        """Validate token counts are not negative."""
        if self.input_tokens < 0:
            raise ValueError("input_tokens cannot be negative")
        if self.output_tokens < 0:
            raise ValueError("output_tokens cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "input": self.input_tokens,
            "output": self.output_tokens,
            "total": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenUsage":
        return cls(
            input_tokens=int(data.get("input", 0)),
            output_tokens=int(data.get("output", 0)),
        )


def estimate_tokens(text: str) -> int:
    """Rough token estimate for providers that do not report usage.

    Uses whitespace-separated words, which is close enough for quota
    accounting of the mock provider.
    """
    return len(text.split())
