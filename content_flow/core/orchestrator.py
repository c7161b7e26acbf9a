"""
Request orchestration.

Turns a NormalizedRequest into at most one successful provider call:

1. Validate the request
2. Cache lookup (a hit returns at once, no quota charged)
3. Quota check
4. Primary provider with bounded retries on transient errors
5. One hop to the fallback provider
6. On success, record usage and cache the result
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .cache import CacheManager, fingerprint
from .errors import (
    AllProvidersFailed,
    ContentPolicyViolation,
    ProviderContentPolicyError,
    ProviderError,
    ProviderFailure,
)
from .events import CONTENT_GENERATED, EventBus
from .ledger import UsageLedger
from .requests import NormalizedRequest, ProviderResult, validate_request
from content_flow.sdk.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5


@dataclass(frozen=True)
class GenerationOutcome:
    """A result plus how it was obtained."""
    result: ProviderResult
    cached: bool
    provider_id: str
    attempts: int
    fingerprint: str


class Orchestrator:
    """Cache-first, quota-bounded, retrying front door to the providers."""

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: CacheManager,
        ledger: UsageLedger,
        default_provider: str,
        fallback_provider: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        cache_ttl: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        events: Optional[EventBus] = None
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds cannot be negative")
        self.registry = registry
        self.cache = cache
        self.ledger = ledger
        self.default_provider = default_provider
        self.fallback_provider = fallback_provider
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.cache_ttl = cache_ttl
        self._sleep = sleep
        self.events = events

    def generate_or_improve(self, request: NormalizedRequest, subject_id: str) -> ProviderResult:
        """Run a request and return the provider result.

        Raises:
            InvalidParameter: Malformed request or unknown provider
            QuotaExceeded: The subject is out of quota
            ContentPolicyViolation: A provider refused the content
            AllProvidersFailed: No provider produced a result
        """
        return self.generate_or_improve_detailed(request, subject_id).result

    def generate_or_improve_detailed(
        self, request: NormalizedRequest, subject_id: str
    ) -> GenerationOutcome:
        validate_request(request)
        key = fingerprint(request)

        cached = self.cache.get(key)
        if cached is not None:
            return GenerationOutcome(
                result=cached,
                cached=True,
                provider_id=cached.provider_id,
                attempts=0,
                fingerprint=key,
            )

        self.ledger.enforce(subject_id)

        primary = request.provider_hint or self.default_provider
        # Resolve both adapters up front so a bad id fails before any call.
        chain = [primary]
        self.registry.get(primary)
        if self.fallback_provider and self.fallback_provider != primary:
            self.registry.get(self.fallback_provider)
            chain.append(self.fallback_provider)

        failures: List[ProviderFailure] = []
        for provider_id in chain:
            result, attempts = self._try_provider(provider_id, request, subject_id, failures)
            if result is None:
                logger.warning("Provider %s exhausted after %d attempt(s)", provider_id, attempts)
                continue

            self.ledger.record_result(subject_id, result, fingerprint=key)
            self.cache.set(key, result, ttl=self.cache_ttl)
            total_attempts = len(failures) + 1
            logger.info(
                "Request served by %s for %s (attempts=%d, tokens=%d)",
                provider_id, subject_id, total_attempts, result.token_usage.total_tokens,
            )
            if self.events is not None:
                self.events.publish(
                    CONTENT_GENERATED,
                    subject_id=subject_id,
                    provider_id=provider_id,
                    operation=request.operation.value,
                    fingerprint=key,
                    tokens_used=result.token_usage.total_tokens,
                )
            return GenerationOutcome(
                result=result,
                cached=False,
                provider_id=provider_id,
                attempts=total_attempts,
                fingerprint=key,
            )

        raise AllProvidersFailed(failures)

    def _try_provider(
        self,
        provider_id: str,
        request: NormalizedRequest,
        subject_id: str,
        failures: List[ProviderFailure]
    ) -> Tuple[Optional[ProviderResult], int]:
        """Call one provider with retries. Failed attempts are appended to ``failures``."""
        adapter = self.registry.get(provider_id)
        attempts = 0
        for attempt in range(self.max_retries + 1):
            attempts += 1
            try:
                return adapter.call(request), attempts
            except ProviderContentPolicyError as e:
                logger.warning("Provider %s refused the content: %s", provider_id, e)
                self.ledger.record_failure(subject_id, provider_id, e.tokens_used)
                raise ContentPolicyViolation(str(e), provider_id=provider_id, cause=e) from e
            except ProviderError as e:
                failures.append(ProviderFailure(provider_id=provider_id, attempt=attempt + 1, error=e))
                self.ledger.record_failure(subject_id, provider_id, e.tokens_used)
                if not e.retryable:
                    logger.warning(
                        "Provider %s failed with %s, not retrying: %s",
                        provider_id, type(e).__name__, e,
                    )
                    break
                if attempt < self.max_retries:
                    delay = self.retry_backoff_seconds * (2 ** attempt)
                    logger.warning(
                        "Provider %s attempt %d/%d failed (%s), retrying in %.2fs",
                        provider_id, attempt + 1, self.max_retries + 1, e, delay,
                    )
                    self._sleep(delay)
        return None, attempts
