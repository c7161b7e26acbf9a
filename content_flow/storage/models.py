"""
Data models for storage layer.

Defines the persisted entities: cache entries, usage windows and events,
suggestions and content history.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from content_flow.core.requests import ProviderResult


class SuggestionKind(Enum):
    GENERATION = "generation"
    IMPROVEMENT = "improvement"
    CORRECTION = "correction"


class SuggestionStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


class ChangeKind(Enum):
    AI_GENERATED = "ai_generated"
    AI_IMPROVED = "ai_improved"
    AI_REJECTED = "ai_rejected"
    MANUAL_REVERT = "manual_revert"


class UsageDimension(Enum):
    """Independent quota dimensions tracked per subject."""
    REQUESTS = "requests"
    TOKENS = "tokens"


@dataclass(frozen=True)
class CacheEntry:
    """A cached provider result.

    Entries past ``expires_at`` are treated as absent regardless of whether
    the backend has evicted them yet.
    """
    key: str
    value: ProviderResult
    created_at: float
    expires_at: float

    def __post_init__(self):
        """Validate the entry has a positive lifetime."""
        if len(self.key) > 250:
            raise ValueError("cache key cannot exceed 250 characters")
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class UsageWindow:
    """Counters for one subject in one quota dimension.

    Mutated only by the usage store, under its lock or transaction.
    """
    subject_id: str
    dimension: UsageDimension
    window_start: float
    window_seconds: int
    request_count: int = 0
    token_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_seconds

    def resets_at(self) -> float:
        return self.window_start + self.window_seconds


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one accounted provider call.

    Append-only events that create an auditable ledger of AI spend.
    Once written, these records must never be modified.
    """
    timestamp: datetime
    subject_id: str
    provider_id: str
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float
    succeeded: bool = True
    fingerprint: Optional[str] = None


@dataclass(frozen=True)
class DiffSummary:
    """Coarse before/after comparison stored with each history entry."""
    word_delta: int
    char_delta: int
    similarity: float
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word_delta": self.word_delta,
            "char_delta": self.char_delta,
            "similarity": self.similarity,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiffSummary":
        return cls(
            word_delta=int(data.get("word_delta", 0)),
            char_delta=int(data.get("char_delta", 0)),
            similarity=float(data.get("similarity", 1.0)),
            description=str(data.get("description", "")),
        )


@dataclass(frozen=True)
class Suggestion:
    """A reviewable AI-produced change to one document.

    ``status`` moves Pending -> Accepted or Pending -> Rejected exactly once.
    Instances are snapshots; the repository holds the authoritative state.
    """
    id: int
    target_document_id: str
    source_workflow_id: Optional[str]
    author_id: str
    original_content: str
    suggested_content: str
    kind: SuggestionKind
    status: SuggestionStatus
    confidence: Optional[float]
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    processed_at: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit record of a content change.

    ``sequence_number`` orders a document's trail and is gap-free per
    document, independent of timestamp precision.
    """
    id: int
    document_id: str
    actor_id: str
    content_before: str
    content_after: str
    change_kind: ChangeKind
    sequence_number: int
    created_at: datetime
    diff: DiffSummary
    suggestion_id: Optional[int] = None
    tokens_used: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
