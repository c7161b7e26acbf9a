"""
Service facade.

ContentFlow wires the orchestrator, the suggestion manager and the history
engine to one database, one cache and one event bus, and exposes the
operations a web or UI layer calls.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .cache import CacheManager, CacheStats
from .events import EventBus, Subscriber
from .history import HistoryEngine, HistoryFilter
from .ledger import QuotaPolicy, UsageLedger
from .locking import DocumentLocks
from .orchestrator import GenerationOutcome, Orchestrator
from .permissions import AllowAllCapabilityChecker, CapabilityChecker
from .requests import NormalizedRequest, ProviderResult
from .suggestions import SuggestionManager
from content_flow.config.loader import (
    CacheBackendKind,
    CacheConfig,
    ContentFlowConfig,
    LedgerBackendKind,
    RateLimitConfig,
)
from content_flow.sdk.base import ConnectionCheck
from content_flow.sdk.registry import ProviderRegistry, build_registry
from content_flow.storage.cache_backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    SqliteCacheBackend,
)
from content_flow.storage.documents import DocumentStore, SqliteDocumentStore
from content_flow.storage.models import HistoryEntry, Suggestion, SuggestionKind, SuggestionStatus
from content_flow.storage.repository import ContentRepository
from content_flow.storage.usage_store import MemoryUsageStore, SqliteUsageStore, UsageStore

logger = logging.getLogger(__name__)


def build_cache_backend(config: CacheConfig, database_path: str) -> CacheBackend:
    if config.backend is CacheBackendKind.REDIS:
        return RedisCacheBackend(config.redis_url or "redis://localhost:6379/0")
    if config.backend is CacheBackendKind.SQLITE:
        return SqliteCacheBackend(database_path)
    return MemoryCacheBackend()


def build_usage_store(config: RateLimitConfig, database_path: str) -> UsageStore:
    if config.backend is LedgerBackendKind.SQLITE:
        return SqliteUsageStore(database_path)
    return MemoryUsageStore()


def quota_policy(config: RateLimitConfig) -> QuotaPolicy:
    return QuotaPolicy(
        requests_per_window=config.requests_per_window,
        window_seconds=config.window_seconds,
        daily_token_cap=config.daily_token_cap,
        charge_failed_calls=config.charge_failed_calls,
        fail_open=config.fail_open,
    )


class ContentFlow:
    """Entry point for generating content and reviewing it."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        suggestions: SuggestionManager,
        history: HistoryEngine,
        events: EventBus
    ):
        self.orchestrator = orchestrator
        self.suggestions = suggestions
        self.history = history
        self.events = events

    @classmethod
    def from_config(
        cls,
        config: ContentFlowConfig,
        documents: Optional[DocumentStore] = None,
        capabilities: Optional[CapabilityChecker] = None,
        registry: Optional[ProviderRegistry] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep
    ) -> "ContentFlow":
        """Build every component from configuration.

        Args:
            config: Loaded configuration
            documents: Document store (defaults to documents in the same database)
            capabilities: Permission checker (defaults to allowing every edit)
            registry: Pre-built provider registry (defaults to the configured providers)
            clock: Time source shared by cache, ledger and history
            sleep: Used between retries
        """
        events = EventBus()
        locks = DocumentLocks()
        repository = ContentRepository(config.database_path)
        documents = documents or SqliteDocumentStore(config.database_path, clock=clock)
        capabilities = capabilities or AllowAllCapabilityChecker()
        registry = registry or build_registry(config)

        cache = CacheManager(
            build_cache_backend(config.cache, config.database_path),
            enabled=config.cache.enabled,
            default_ttl=config.cache.ttl_seconds,
            clock=clock,
        )
        ledger = UsageLedger(
            build_usage_store(config.rate_limits, config.database_path),
            policy=quota_policy(config.rate_limits),
            clock=clock,
        )
        orchestrator = Orchestrator(
            registry,
            cache,
            ledger,
            default_provider=config.default_provider,
            fallback_provider=config.fallback_provider,
            max_retries=config.max_retries,
            retry_backoff_seconds=config.retry_backoff_seconds,
            cache_ttl=config.cache.ttl_seconds,
            sleep=sleep,
            events=events,
        )
        history = HistoryEngine(repository, documents, capabilities, locks=locks, events=events, clock=clock)
        suggestions = SuggestionManager(
            repository, documents, capabilities, history, locks=locks, events=events, clock=clock
        )
        logger.info(
            "ContentFlow ready (providers=%s, default=%s, fallback=%s, cache=%s, ledger=%s)",
            ",".join(registry.ids()),
            config.default_provider,
            config.fallback_provider or "none",
            config.cache.backend.value if config.cache.enabled else "disabled",
            config.rate_limits.backend.value,
        )
        return cls(orchestrator, suggestions, history, events)

    # Generation

    def generate_or_improve(self, request: NormalizedRequest, subject_id: str) -> ProviderResult:
        return self.orchestrator.generate_or_improve(request, subject_id)

    def generate_or_improve_detailed(
        self, request: NormalizedRequest, subject_id: str
    ) -> GenerationOutcome:
        return self.orchestrator.generate_or_improve_detailed(request, subject_id)

    # Review

    def create_suggestion(
        self,
        result: ProviderResult,
        target_document_id: str,
        author_id: str,
        workflow_id: Optional[str] = None,
        original_content: str = "",
        kind: Optional[SuggestionKind] = None,
        confidence: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Suggestion:
        return self.suggestions.create(
            result,
            target_document_id=target_document_id,
            workflow_id=workflow_id,
            author_id=author_id,
            original_content=original_content,
            kind=kind,
            confidence=confidence,
            metadata=metadata,
        )

    def accept_suggestion(self, suggestion_id: int, actor_id: str) -> Suggestion:
        return self.suggestions.accept(suggestion_id, actor_id)

    def reject_suggestion(self, suggestion_id: int, actor_id: str) -> Suggestion:
        return self.suggestions.reject(suggestion_id, actor_id)

    def get_suggestion(self, suggestion_id: int) -> Suggestion:
        return self.suggestions.get(suggestion_id)

    def list_suggestions(
        self, document_id: str, status: Optional[SuggestionStatus] = None
    ) -> List[Suggestion]:
        return self.suggestions.list_for_document(document_id, status)

    # History

    def revert(self, history_entry_id: int, actor_id: str) -> HistoryEntry:
        return self.history.revert(history_entry_id, actor_id)

    def get_history(
        self, document_id: str, filters: Optional[HistoryFilter] = None
    ) -> List[HistoryEntry]:
        return self.history.get_history(document_id, filters)

    def statistics(self, document_id: str) -> Dict[str, Any]:
        return self.history.statistics(document_id)

    def delete_document(self, document_id: str) -> int:
        """Drop a document's suggestions and history. The document itself is the store's."""
        with self.history.locks.hold(document_id):
            removed = self.history.repository.delete_document_records(document_id)
        logger.info("Removed %d record(s) for document %s", removed, document_id)
        return removed

    # Operations

    def test_provider(self, provider_id: Optional[str] = None) -> ConnectionCheck:
        """Check one provider's credentials and reachability, the default one if none is named.

        The check goes straight to the adapter: no cache, no quota charge.

        Raises:
            InvalidParameter: If the provider id is not registered
        """
        provider_id = provider_id or self.orchestrator.default_provider
        return self.orchestrator.registry.get(provider_id).test_connection()

    def cache_stats(self) -> CacheStats:
        return self.orchestrator.cache.stats()

    def flush_cache(self) -> bool:
        return self.orchestrator.cache.flush()

    def cleanup_cache(self) -> int:
        """Sweep expired responses out of the cache backend."""
        return self.orchestrator.cache.cleanup_expired()

    def usage_summary(self, subject_id: str) -> Dict[str, Any]:
        return self.orchestrator.ledger.usage_summary(subject_id)

    def subscribe(self, callback: Subscriber) -> Subscriber:
        return self.events.subscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> bool:
        return self.events.unsubscribe(callback)
