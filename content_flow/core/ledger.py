"""
Per-subject usage quotas.

Two dimensions are enforced at the same time: requests per short window and
tokens per day. ``check`` runs before a provider call and ``record`` after a
successful one; a cache hit does neither.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .errors import LedgerBackendError, QuotaExceeded
from .pricing import calculate_cost
from .requests import ProviderResult
from .token_counter import TokenUsage
from content_flow.storage.models import UsageDimension, UsageEvent
from content_flow.storage.usage_store import UsageStore, summarize_events

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400


@dataclass(frozen=True)
class QuotaPolicy:
    """Limits applied to every subject. ``None`` disables a dimension."""
    requests_per_window: Optional[int] = 10
    window_seconds: int = 60
    daily_token_cap: Optional[int] = 100000
    charge_failed_calls: bool = False
    fail_open: bool = True

    def __post_init__(self):
        if self.requests_per_window is not None and self.requests_per_window < 1:
            raise ValueError("requests_per_window must be at least 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        if self.daily_token_cap is not None and self.daily_token_cap < 1:
            raise ValueError("daily_token_cap must be at least 1")


@dataclass(frozen=True)
class LedgerDecision:
    allowed: bool
    reason: str = ""
    dimension: Optional[UsageDimension] = None
    limit: Optional[int] = None
    used: Optional[int] = None
    retry_after: Optional[float] = None

    def to_exception(self) -> QuotaExceeded:
        dimension = self.dimension.value if self.dimension else ""
        return QuotaExceeded(
            self.reason,
            dimension=dimension,
            limit=self.limit or 0,
            used=self.used or 0,
            retry_after=self.retry_after,
        )


class UsageLedger:
    """Checks and records usage against a QuotaPolicy."""

    def __init__(
        self,
        store: UsageStore,
        policy: QuotaPolicy = QuotaPolicy(),
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.policy = policy
        self._clock = clock

    def _dimensions(self):
        if self.policy.requests_per_window is not None:
            yield (
                UsageDimension.REQUESTS,
                self.policy.requests_per_window,
                self.policy.window_seconds,
            )
        if self.policy.daily_token_cap is not None:
            yield UsageDimension.TOKENS, self.policy.daily_token_cap, DAY_SECONDS

    def check(self, subject_id: str) -> LedgerDecision:
        """Decide whether ``subject_id`` may make another provider call.

        A store failure allows the call when the policy fails open and
        denies it otherwise.
        """
        now = self._clock()
        try:
            for dimension, limit, window_seconds in self._dimensions():
                window = self.store.current(subject_id, dimension, window_seconds, now)
                used = (
                    window.request_count
                    if dimension is UsageDimension.REQUESTS
                    else window.token_count
                )
                if used >= limit:
                    retry_after = max(0.0, window.resets_at() - now)
                    logger.info(
                        "Quota exceeded for %s: %s %d/%d, retry in %.0fs",
                        subject_id, dimension.value, used, limit, retry_after,
                    )
                    return LedgerDecision(
                        allowed=False,
                        reason=f"{dimension.value} quota of {limit} reached for {subject_id}",
                        dimension=dimension,
                        limit=limit,
                        used=used,
                        retry_after=retry_after,
                    )
        except LedgerBackendError as e:
            if self.policy.fail_open:
                logger.warning("Usage store unavailable, allowing %s: %s", subject_id, e)
                return LedgerDecision(allowed=True, reason="usage store unavailable")
            logger.error("Usage store unavailable, denying %s: %s", subject_id, e)
            return LedgerDecision(allowed=False, reason="usage store unavailable")
        return LedgerDecision(allowed=True)

    def enforce(self, subject_id: str) -> LedgerDecision:
        """Like check, but raises QuotaExceeded on a denial."""
        decision = self.check(subject_id)
        if not decision.allowed:
            raise decision.to_exception()
        return decision

    def record(self, subject_id: str, tokens_used: int, count_request: bool = True) -> None:
        """Charge a call to the subject's active windows.

        Failures are logged; the call being accounted has already succeeded.
        """
        if tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")
        now = self._clock()
        try:
            if count_request and self.policy.requests_per_window is not None:
                self.store.consume(
                    subject_id, UsageDimension.REQUESTS, self.policy.window_seconds, now, requests=1
                )
            if self.policy.daily_token_cap is not None:
                self.store.consume(
                    subject_id, UsageDimension.TOKENS, DAY_SECONDS, now, tokens=tokens_used
                )
        except LedgerBackendError as e:
            logger.warning("Failed to record usage for %s: %s", subject_id, e)

    def record_result(
        self,
        subject_id: str,
        result: ProviderResult,
        fingerprint: Optional[str] = None
    ) -> None:
        """Record a successful call and append its usage event."""
        self.record(subject_id, result.token_usage.total_tokens)
        self._append_event(
            subject_id,
            provider_id=result.provider_id,
            model=result.model,
            input_tokens=result.token_usage.input_tokens,
            output_tokens=result.token_usage.output_tokens,
            succeeded=True,
            fingerprint=fingerprint,
        )

    def record_failure(self, subject_id: str, provider_id: str, tokens_used: int) -> None:
        """Charge tokens burned by a failed call, when the policy says so."""
        if not self.policy.charge_failed_calls or tokens_used <= 0:
            return
        self.record(subject_id, tokens_used, count_request=False)
        self._append_event(
            subject_id,
            provider_id=provider_id,
            model="",
            input_tokens=tokens_used,
            output_tokens=0,
            succeeded=False,
        )

    def _append_event(
        self,
        subject_id: str,
        provider_id: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        succeeded: bool,
        fingerprint: Optional[str] = None
    ) -> None:
        usage = TokenUsage(input_tokens, output_tokens)
        event = UsageEvent(
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            subject_id=subject_id,
            provider_id=provider_id,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage.total_tokens,
            estimated_cost=calculate_cost(model, usage) if model else 0.0,
            succeeded=succeeded,
            fingerprint=fingerprint,
        )
        try:
            self.store.append_event(event)
        except LedgerBackendError as e:
            logger.warning("Failed to append usage event for %s: %s", subject_id, e)

    def usage_summary(self, subject_id: str) -> Dict[str, Any]:
        """Current window counters, remaining allowance and lifetime totals."""
        now = self._clock()
        summary: Dict[str, Any] = {"subject_id": subject_id, "windows": {}}
        for dimension, limit, window_seconds in self._dimensions():
            window = self.store.current(subject_id, dimension, window_seconds, now)
            used = (
                window.request_count
                if dimension is UsageDimension.REQUESTS
                else window.token_count
            )
            summary["windows"][dimension.value] = {
                "used": used,
                "limit": limit,
                "remaining": max(0, limit - used),
                "window_seconds": window_seconds,
                "resets_in": max(0.0, window.resets_at() - now),
            }
        summary["totals"] = summarize_events(self.store.list_events(subject_id))
        return summary
