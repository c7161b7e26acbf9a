"""
Error taxonomy for content-flow.

Every failure the core surfaces to callers derives from ContentFlowError so
the surrounding layer can map them to responses in one place.
"""

from dataclasses import dataclass
from typing import List, Optional


class ContentFlowError(Exception):
    """Base class for all content-flow errors."""


class InvalidParameter(ContentFlowError, ValueError):
    """Raised for caller errors. Never retried, surfaced verbatim."""


class QuotaExceeded(ContentFlowError):
    """Raised when a subject has used up one of its quota dimensions."""

    def __init__(
        self,
        message: str,
        dimension: str,
        limit: int,
        used: int,
        retry_after: Optional[float] = None
    ):
        super().__init__(message)
        self.dimension = dimension
        self.limit = limit
        self.used = used
        self.retry_after = retry_after


class ProviderError(ContentFlowError):
    """A provider call failed.

    The base class is used directly for backend errors that are neither
    retryable nor one of the specific categories below (e.g. a 404 for an
    unknown model).
    """

    retryable = False

    def __init__(self, message: str, provider_id: str = "", tokens_used: int = 0):
        super().__init__(message)
        self.provider_id = provider_id
        # Tokens the backend reports as consumed before failing, if any.
        self.tokens_used = tokens_used


class ProviderAuthError(ProviderError):
    """Invalid or missing credentials for a provider."""


class ProviderRateLimitError(ProviderError):
    """The provider itself throttled the request."""

    def __init__(
        self,
        message: str,
        provider_id: str = "",
        tokens_used: int = 0,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, provider_id, tokens_used)
        self.retry_after = retry_after


class ProviderTransientError(ProviderError):
    """Network failure, timeout or 5xx. Retried by the orchestrator."""

    retryable = True


class ProviderContentPolicyError(ProviderError):
    """The provider refused the content."""


class ContentPolicyViolation(ContentFlowError):
    """Raised by the orchestrator when a provider rejects the content."""

    def __init__(self, message: str, provider_id: str, cause: ProviderContentPolicyError):
        super().__init__(message)
        self.provider_id = provider_id
        self.cause = cause


@dataclass(frozen=True)
class ProviderFailure:
    """One failed attempt against one provider."""
    provider_id: str
    attempt: int
    error: ProviderError

    @property
    def kind(self) -> str:
        return type(self.error).__name__


class AllProvidersFailed(ContentFlowError):
    """Every attempt against the primary and fallback providers failed.

    ``causes`` keeps the attempts in the order they were made.
    """

    def __init__(self, causes: List[ProviderFailure]):
        self.causes = list(causes)
        summary = "; ".join(
            f"{c.provider_id}#{c.attempt}: {c.kind}: {c.error}" for c in self.causes
        )
        super().__init__(f"All providers failed ({summary})")

    @property
    def providers_tried(self) -> List[str]:
        seen: List[str] = []
        for cause in self.causes:
            if cause.provider_id not in seen:
                seen.append(cause.provider_id)
        return seen

    @property
    def all_rate_limited(self) -> bool:
        return bool(self.causes) and all(
            isinstance(c.error, ProviderRateLimitError) for c in self.causes
        )

    @property
    def all_auth_errors(self) -> bool:
        return bool(self.causes) and all(
            isinstance(c.error, ProviderAuthError) for c in self.causes
        )


class Forbidden(ContentFlowError):
    """The actor may not edit the target document."""


class NotFound(ContentFlowError):
    """Unknown suggestion, document or history entry."""


class AlreadyProcessed(ContentFlowError):
    """The suggestion already reached a terminal state."""


class StaleSuggestion(ContentFlowError):
    """The text a suggestion replaces is no longer in the document."""


class CacheBackendError(ContentFlowError):
    """A cache backend could not complete an operation."""


class LedgerBackendError(ContentFlowError):
    """A usage store could not complete an operation."""
