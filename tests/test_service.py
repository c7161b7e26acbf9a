"""
End-to-end tests for the ContentFlow facade.

Runs the whole generate -> suggest -> review -> history cycle against the
mock provider and a temporary database.
"""

import os
import tempfile

import pytest

from content_flow.config.loader import default_config
from content_flow.core.errors import InvalidParameter, ProviderTransientError, QuotaExceeded
from content_flow.core.events import (
    CONTENT_GENERATED,
    CONTENT_REVERTED,
    HISTORY_RECORDED,
    SUGGESTION_ACCEPTED,
    SUGGESTION_CREATED,
)
from content_flow.core.history import HistoryFilter
from content_flow.core.permissions import StaticCapabilityChecker
from content_flow.core.requests import NormalizedRequest
from content_flow.core.service import ContentFlow
from content_flow.demo.seed_demo_data import seed
from content_flow.sdk.mock_client import MockAdapter
from content_flow.sdk.registry import ProviderRegistry
from content_flow.storage.documents import InMemoryDocumentStore
from content_flow.storage.models import ChangeKind, SuggestionStatus


class FlakyAdapter(MockAdapter):
    """Fails with a transient error a fixed number of times, then behaves like the mock."""

    def __init__(self, provider_id: str, failures: int):
        super().__init__(provider_id)
        self.failures = failures

    def _send(self, request):
        if self.failures > 0:
            self.failures -= 1
            raise ProviderTransientError("upstream timeout", provider_id=self.provider_id)
        return super()._send(request)


class TestContentFlow:
    """Test the facade wired from configuration."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = default_config(os.path.join(self.temp_dir, "flow.db"))
        self.documents = InMemoryDocumentStore()
        self.flow = ContentFlow.from_config(self.config, documents=self.documents, sleep=lambda s: None)
        self.events = []
        self.flow.subscribe(self.events.append)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_generate_accept_into_empty_document(self):
        self.documents.create_document("post-1")
        request = NormalizedRequest.generate("intro about gardening", temperature=0.7, max_tokens=500)

        result = self.flow.generate_or_improve(request, "editor")
        suggestion = self.flow.create_suggestion(result, "post-1", author_id="editor", workflow_id="wf-1")
        accepted = self.flow.accept_suggestion(suggestion.id, "editor")

        assert accepted.status == SuggestionStatus.ACCEPTED
        assert self.documents.get_document("post-1").content == result.content

        [entry] = self.flow.get_history("post-1")
        assert entry.change_kind == ChangeKind.AI_GENERATED
        assert entry.content_before == ""
        assert entry.content_after == result.content
        assert entry.sequence_number == 1
        assert entry.suggestion_id == suggestion.id

        assert [e.name for e in self.events] == [
            CONTENT_GENERATED,
            SUGGESTION_CREATED,
            SUGGESTION_ACCEPTED,
            HISTORY_RECORDED,
        ]

    def test_repeat_request_is_cached(self):
        request = NormalizedRequest.generate("intro about gardening", temperature=0.7, max_tokens=500)

        first = self.flow.generate_or_improve_detailed(request, "editor")
        second = self.flow.generate_or_improve_detailed(request, "editor")

        assert not first.cached
        assert second.cached
        assert second.result == first.result
        assert self.flow.cache_stats().hits == 1
        assert self.flow.usage_summary("editor")["windows"]["requests"]["used"] == 1

    def test_improve_then_revert(self):
        self.documents.create_document("post-1", "Gardening is fun.")
        result = self.flow.generate_or_improve(
            NormalizedRequest.improve("Gardening is fun.", improvement_type="engagement"), "editor"
        )
        suggestion = self.flow.create_suggestion(
            result, "post-1", author_id="editor", original_content="Gardening is fun."
        )
        self.flow.accept_suggestion(suggestion.id, "editor")
        assert self.documents.get_document("post-1").content == "Gardening is fun. (improved)"

        [accepted] = self.flow.get_history("post-1")
        revert = self.flow.revert(accepted.id, "editor")

        assert self.documents.get_document("post-1").content == "Gardening is fun."
        assert revert.sequence_number == 2
        assert CONTENT_REVERTED in [e.name for e in self.events]

        manual = self.flow.get_history("post-1", HistoryFilter(change_kind=ChangeKind.MANUAL_REVERT))
        assert [e.id for e in manual] == [revert.id]

    def test_statistics_and_listing(self):
        self.documents.create_document("post-1")
        for prompt in ("one", "two"):
            result = self.flow.generate_or_improve(NormalizedRequest.generate(prompt), "editor")
            self.flow.create_suggestion(result, "post-1", author_id="editor")

        first, second = self.flow.list_suggestions("post-1")
        self.flow.accept_suggestion(first.id, "alice")
        self.flow.reject_suggestion(second.id, "bob")

        stats = self.flow.statistics("post-1")
        assert stats["total_changes"] == 2
        assert stats["by_change_kind"] == {"ai_generated": 1, "ai_rejected": 1}
        assert stats["contributors"] == ["alice", "bob"]
        assert self.flow.list_suggestions("post-1", SuggestionStatus.PENDING) == []

    def test_delete_document_drops_records(self):
        self.documents.create_document("post-1")
        result = self.flow.generate_or_improve(NormalizedRequest.generate("one"), "editor")
        suggestion = self.flow.create_suggestion(result, "post-1", author_id="editor")
        self.flow.accept_suggestion(suggestion.id, "editor")

        assert self.flow.delete_document("post-1") == 2
        assert self.flow.get_history("post-1") == []

    def test_flush_cache(self):
        request = NormalizedRequest.generate("hello")
        self.flow.generate_or_improve(request, "editor")

        assert self.flow.flush_cache() is True
        assert not self.flow.generate_or_improve_detailed(request, "editor").cached

    def test_cleanup_cache(self):
        now = [1_700_000_000.0]
        flow = ContentFlow.from_config(self.config, documents=self.documents, clock=lambda: now[0])
        flow.generate_or_improve(NormalizedRequest.generate("hello"), "editor")
        assert flow.cache_stats().size == 1

        now[0] += self.config.cache.ttl_seconds + 1

        assert flow.cleanup_cache() == 1
        stats = flow.cache_stats()
        assert stats.size == 0
        assert stats.backend == self.config.cache.backend.value

    def test_provider_check(self):
        check = self.flow.test_provider()

        assert check.ok is True
        assert check.provider_id == "mock"
        # Checks bypass the cache and the quota ledger.
        assert self.flow.cache_stats().writes == 0
        assert self.flow.usage_summary("editor")["windows"]["requests"]["used"] == 0

    def test_provider_check_unknown_id(self):
        with pytest.raises(InvalidParameter, match="Unknown provider"):
            self.flow.test_provider("missing")

    def test_unsubscribe(self):
        assert self.flow.unsubscribe(self.events.append) is True
        self.flow.generate_or_improve(NormalizedRequest.generate("hello"), "editor")
        assert self.events == []


class TestContentFlowWiring:
    """Test from_config with injected collaborators."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = default_config(os.path.join(self.temp_dir, "flow.db"))

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_retries_use_injected_sleep(self):
        sleeps = []
        registry = ProviderRegistry()
        registry.register("mock", FlakyAdapter("mock", failures=2))
        flow = ContentFlow.from_config(self.config, registry=registry, sleep=sleeps.append)

        outcome = flow.generate_or_improve_detailed(NormalizedRequest.generate("hello"), "editor")

        assert outcome.attempts == 3
        assert sleeps == [self.config.retry_backoff_seconds, self.config.retry_backoff_seconds * 2]

    def test_quota_from_config(self):
        flow = ContentFlow.from_config(self.config)

        for i in range(self.config.rate_limits.requests_per_window):
            flow.generate_or_improve(NormalizedRequest.generate(f"prompt {i}"), "editor")

        with pytest.raises(QuotaExceeded):
            flow.generate_or_improve(NormalizedRequest.generate("one more"), "editor")

    def test_capabilities_are_enforced(self):
        documents = InMemoryDocumentStore({"post-1": ""})
        flow = ContentFlow.from_config(
            self.config,
            documents=documents,
            capabilities=StaticCapabilityChecker({"post-1": ["owner"]}),
        )
        result = flow.generate_or_improve(NormalizedRequest.generate("hello"), "owner")
        suggestion = flow.create_suggestion(result, "post-1", author_id="owner")

        flow.accept_suggestion(suggestion.id, "owner")
        assert documents.get_document("post-1").content == result.content

    def test_demo_seed(self):
        summary = seed(self.config.database_path)

        assert summary == {"history": 2, "pending": 0}
