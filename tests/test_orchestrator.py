"""
Unit tests for request orchestration.

Tests cache-first behavior, retries with backoff, fallback, content policy
handling and the absence of side effects on failure.
"""

from typing import List

import pytest

from content_flow.core.cache import CacheManager, fingerprint
from content_flow.core.errors import (
    AllProvidersFailed,
    ContentPolicyViolation,
    InvalidParameter,
    ProviderAuthError,
    ProviderContentPolicyError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
    QuotaExceeded,
)
from content_flow.core.events import CONTENT_GENERATED, EventBus
from content_flow.core.ledger import QuotaPolicy, UsageLedger
from content_flow.core.orchestrator import Orchestrator
from content_flow.core.requests import NormalizedRequest, ProviderResult
from content_flow.core.token_counter import TokenUsage
from content_flow.sdk.base import ProviderAdapter
from content_flow.sdk.mock_client import MockAdapter
from content_flow.sdk.registry import ProviderRegistry
from content_flow.storage.cache_backends import MemoryCacheBackend
from content_flow.storage.usage_store import MemoryUsageStore


class ScriptedAdapter(ProviderAdapter):
    """Raises the scripted errors in order, then succeeds."""

    def __init__(self, provider_id: str, errors: List[ProviderError] = None, content: str = "ok"):
        self.provider_id = provider_id
        self.errors = list(errors or [])
        self.content = content
        self.calls = 0

    def _send(self, request: NormalizedRequest) -> ProviderResult:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return ProviderResult(
            content=f"{self.content} from {self.provider_id}",
            token_usage=TokenUsage(10, 5),
            model="gpt-4",
            provider_id=self.provider_id,
        )


class TestOrchestrator:
    """Test the generate_or_improve pipeline."""

    def setup_method(self):
        self.sleeps: List[float] = []
        self.store = MemoryUsageStore()
        self.ledger = UsageLedger(self.store, QuotaPolicy(requests_per_window=5))
        self.cache = CacheManager(MemoryCacheBackend())
        self.events = EventBus()
        self.published = []
        self.events.subscribe(self.published.append)

    def _orchestrator(self, *adapters, fallback: str = None, max_retries: int = 2) -> Orchestrator:
        registry = ProviderRegistry()
        for adapter in adapters:
            registry.register(adapter.provider_id, adapter)
        return Orchestrator(
            registry,
            self.cache,
            self.ledger,
            default_provider=adapters[0].provider_id,
            fallback_provider=fallback,
            max_retries=max_retries,
            retry_backoff_seconds=0.5,
            sleep=self.sleeps.append,
            events=self.events,
        )

    def _requests_used(self, subject: str = "user-1") -> int:
        return self.ledger.usage_summary(subject)["windows"]["requests"]["used"]

    def test_success_records_caches_and_publishes(self):
        primary = ScriptedAdapter("primary")
        orchestrator = self._orchestrator(primary)
        request = NormalizedRequest.generate("An intro about gardening", temperature=0.7, max_tokens=500)

        outcome = orchestrator.generate_or_improve_detailed(request, "user-1")

        assert outcome.result.content == "ok from primary"
        assert outcome.cached is False
        assert outcome.provider_id == "primary"
        assert outcome.attempts == 1
        assert outcome.fingerprint == fingerprint(request)
        assert self._requests_used() == 1
        assert self.cache.get(outcome.fingerprint) == outcome.result
        assert len(self.published) == 1
        assert self.published[0].name == CONTENT_GENERATED
        assert self.published[0].payload["provider_id"] == "primary"

    def test_cache_hit_bypasses_ledger_and_provider(self):
        primary = MockAdapter("primary")
        orchestrator = self._orchestrator(primary)
        request = NormalizedRequest.generate("An intro about gardening", temperature=0.7, max_tokens=500)

        first = orchestrator.generate_or_improve(request, "user-1")
        second = orchestrator.generate_or_improve_detailed(request, "user-1")

        assert second.result == first
        assert second.cached is True
        assert second.attempts == 0
        assert primary.call_count == 1
        assert self._requests_used() == 1
        assert len(self.published) == 1

    def test_cache_hit_served_even_when_quota_exhausted(self):
        self.ledger = UsageLedger(self.store, QuotaPolicy(requests_per_window=1))
        orchestrator = self._orchestrator(MockAdapter("primary"))
        request = NormalizedRequest.generate("Hello")

        orchestrator.generate_or_improve(request, "user-1")
        assert orchestrator.generate_or_improve_detailed(request, "user-1").cached

        with pytest.raises(QuotaExceeded):
            orchestrator.generate_or_improve(NormalizedRequest.generate("Other"), "user-1")

    def test_transient_errors_retried_with_backoff(self):
        primary = ScriptedAdapter("primary", [
            ProviderTransientError("timeout"),
            ProviderTransientError("502"),
        ])
        orchestrator = self._orchestrator(primary)

        outcome = orchestrator.generate_or_improve_detailed(NormalizedRequest.generate("Hi"), "user-1")

        assert primary.calls == 3
        assert outcome.attempts == 3
        assert self.sleeps == [0.5, 1.0]
        assert self._requests_used() == 1

    def test_fallback_after_retries_exhausted(self):
        primary = ScriptedAdapter("primary", [ProviderTransientError("timeout")] * 3)
        backup = ScriptedAdapter("backup")
        orchestrator = self._orchestrator(primary, backup, fallback="backup")

        outcome = orchestrator.generate_or_improve_detailed(NormalizedRequest.generate("Hi"), "user-1")

        assert primary.calls == 3
        assert backup.calls == 1
        assert outcome.provider_id == "backup"
        assert outcome.attempts == 4
        assert self.sleeps == [0.5, 1.0]

    @pytest.mark.parametrize("error", [
        ProviderAuthError("bad key"),
        ProviderRateLimitError("slow down", retry_after=30),
        ProviderError("model not found"),
    ])
    def test_non_retryable_errors_go_straight_to_fallback(self, error):
        primary = ScriptedAdapter("primary", [error])
        backup = ScriptedAdapter("backup")
        orchestrator = self._orchestrator(primary, backup, fallback="backup")

        outcome = orchestrator.generate_or_improve_detailed(NormalizedRequest.generate("Hi"), "user-1")

        assert primary.calls == 1
        assert outcome.provider_id == "backup"
        assert self.sleeps == []

    def test_content_policy_stops_without_fallback(self):
        primary = ScriptedAdapter("primary", [ProviderContentPolicyError("refused")])
        backup = ScriptedAdapter("backup")
        orchestrator = self._orchestrator(primary, backup, fallback="backup")

        with pytest.raises(ContentPolicyViolation) as exc_info:
            orchestrator.generate_or_improve(NormalizedRequest.generate("Hi"), "user-1")

        assert exc_info.value.provider_id == "primary"
        assert backup.calls == 0
        assert self._requests_used() == 0

    def test_all_providers_failed_keeps_causes_in_order(self):
        primary = ScriptedAdapter("primary", [
            ProviderTransientError("timeout"),
            ProviderAuthError("revoked"),
        ])
        backup = ScriptedAdapter("backup", [ProviderRateLimitError("busy")])
        orchestrator = self._orchestrator(primary, backup, fallback="backup")
        request = NormalizedRequest.generate("Hi")

        with pytest.raises(AllProvidersFailed) as exc_info:
            orchestrator.generate_or_improve(request, "user-1")

        causes = exc_info.value.causes
        assert [(c.provider_id, c.attempt, c.kind) for c in causes] == [
            ("primary", 1, "ProviderTransientError"),
            ("primary", 2, "ProviderAuthError"),
            ("backup", 1, "ProviderRateLimitError"),
        ]
        assert exc_info.value.providers_tried == ["primary", "backup"]
        assert self._requests_used() == 0
        assert self.cache.get(fingerprint(request)) is None
        assert self.published == []

    def test_zero_retries(self):
        primary = ScriptedAdapter("primary", [ProviderTransientError("timeout")])
        orchestrator = self._orchestrator(primary, max_retries=0)

        with pytest.raises(AllProvidersFailed):
            orchestrator.generate_or_improve(NormalizedRequest.generate("Hi"), "user-1")

        assert primary.calls == 1
        assert self.sleeps == []

    def test_provider_hint_selects_primary(self):
        default = ScriptedAdapter("default")
        hinted = ScriptedAdapter("hinted")
        orchestrator = self._orchestrator(default, hinted)

        outcome = orchestrator.generate_or_improve_detailed(
            NormalizedRequest.generate("Hi", provider_hint="hinted"), "user-1"
        )

        assert outcome.provider_id == "hinted"
        assert default.calls == 0

    def test_fallback_same_as_primary_is_not_called_twice(self):
        primary = ScriptedAdapter("primary", [ProviderAuthError("bad key")])
        orchestrator = self._orchestrator(primary, fallback="primary")

        with pytest.raises(AllProvidersFailed):
            orchestrator.generate_or_improve(NormalizedRequest.generate("Hi"), "user-1")

        assert primary.calls == 1

    def test_unknown_provider_hint(self):
        orchestrator = self._orchestrator(ScriptedAdapter("primary"))

        with pytest.raises(InvalidParameter, match="Unknown provider 'nope'"):
            orchestrator.generate_or_improve(NormalizedRequest.generate("Hi", provider_hint="nope"), "user-1")

    def test_invalid_request_touches_nothing(self):
        primary = ScriptedAdapter("primary")
        orchestrator = self._orchestrator(primary)

        with pytest.raises(InvalidParameter):
            orchestrator.generate_or_improve(NormalizedRequest.generate("Hi", max_tokens=0), "user-1")

        assert primary.calls == 0
        assert self.cache.stats().misses == 0
        assert self._requests_used() == 0

    def test_quota_exceeded_before_provider_call(self):
        self.ledger = UsageLedger(self.store, QuotaPolicy(requests_per_window=1))
        primary = ScriptedAdapter("primary")
        orchestrator = self._orchestrator(primary)

        orchestrator.generate_or_improve(NormalizedRequest.generate("one"), "user-1")
        with pytest.raises(QuotaExceeded):
            orchestrator.generate_or_improve(NormalizedRequest.generate("two"), "user-1")

        assert primary.calls == 1

    def test_failed_call_tokens_charged_when_enabled(self):
        self.ledger = UsageLedger(
            self.store, QuotaPolicy(daily_token_cap=1000, charge_failed_calls=True)
        )
        primary = ScriptedAdapter("primary", [ProviderTransientError("cut off", tokens_used=40)])
        orchestrator = self._orchestrator(primary)

        orchestrator.generate_or_improve(NormalizedRequest.generate("Hi"), "user-1")

        tokens = self.ledger.usage_summary("user-1")["windows"]["tokens"]["used"]
        assert tokens == 40 + 15

    def test_negative_settings_rejected(self):
        with pytest.raises(ValueError):
            Orchestrator(ProviderRegistry(), self.cache, self.ledger, "x", max_retries=-1)
        with pytest.raises(ValueError):
            Orchestrator(ProviderRegistry(), self.cache, self.ledger, "x", retry_backoff_seconds=-1)
