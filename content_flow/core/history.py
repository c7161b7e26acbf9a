"""
Content history engine.

Every change the package makes to a document is recorded as an immutable
HistoryEntry with a per-document, gap-free sequence number. The trail is
what makes AI edits reviewable after the fact and reversible.
"""

import difflib
import logging
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import Forbidden
from .events import CONTENT_REVERTED, HISTORY_RECORDED, EventBus
from .locking import DocumentLocks
from .permissions import CapabilityChecker
from content_flow.storage.documents import DocumentStore
from content_flow.storage.models import ChangeKind, DiffSummary, HistoryEntry, SuggestionStatus
from content_flow.storage.repository import ContentRepository

logger = logging.getLogger(__name__)

__all__ = [
    "DiffSummary",
    "HistoryEngine",
    "HistoryFilter",
    "compute_diff",
    "describe_change",
]


_KIND_LABELS = {
    ChangeKind.AI_GENERATED: "AI-generated content",
    ChangeKind.AI_IMPROVED: "AI-improved content",
    ChangeKind.AI_REJECTED: "AI suggestion rejected",
    ChangeKind.MANUAL_REVERT: "Manual revert",
}


def describe_change(word_delta: int, char_delta: int, change_kind: Optional[ChangeKind] = None) -> str:
    """One-line summary such as "Added 12 words, Added 64 characters, AI-generated content"."""
    parts = []
    if word_delta > 0:
        parts.append(f"Added {word_delta} words")
    elif word_delta < 0:
        parts.append(f"Removed {-word_delta} words")
    if char_delta > 0:
        parts.append(f"Added {char_delta} characters")
    elif char_delta < 0:
        parts.append(f"Removed {-char_delta} characters")
    if change_kind is not None:
        parts.append(_KIND_LABELS[change_kind])
    return ", ".join(parts)


def compute_diff(before: str, after: str, change_kind: Optional[ChangeKind] = None) -> DiffSummary:
    """Summarize how much a change altered the text.

    Similarity is the SequenceMatcher ratio over word tokens, so it is an
    approximation, not a semantic measure.
    """
    before_words = before.split()
    after_words = after.split()
    if not before_words and not after_words:
        similarity = 1.0
    else:
        matcher = difflib.SequenceMatcher(None, before_words, after_words, autojunk=False)
        similarity = round(matcher.ratio(), 4)
    word_delta = len(after_words) - len(before_words)
    char_delta = len(after) - len(before)
    return DiffSummary(
        word_delta=word_delta,
        char_delta=char_delta,
        similarity=similarity,
        description=describe_change(word_delta, char_delta, change_kind),
    )


@dataclass(frozen=True)
class HistoryFilter:
    change_kind: Optional[ChangeKind] = None
    actor_id: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 1:
            raise ValueError("limit must be at least 1")


class HistoryEngine:
    """Append-only audit trail and manual revert."""

    def __init__(
        self,
        repository: ContentRepository,
        documents: DocumentStore,
        capabilities: CapabilityChecker,
        locks: Optional[DocumentLocks] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time
    ):
        self.repository = repository
        self.documents = documents
        self.capabilities = capabilities
        self.locks = locks or DocumentLocks()
        self.events = events
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def append(
        self,
        document_id: str,
        content_before: str,
        content_after: str,
        change_kind: ChangeKind,
        actor_id: str,
        suggestion_id: Optional[int] = None,
        tokens_used: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
        settle_status: Optional[SuggestionStatus] = None
    ) -> HistoryEntry:
        """Record a change. Callers publish events after their own commit."""
        entry = self.repository.append_history(
            document_id=document_id,
            actor_id=actor_id,
            content_before=content_before,
            content_after=content_after,
            change_kind=change_kind,
            diff=compute_diff(content_before, content_after, change_kind),
            created_at=self._now(),
            suggestion_id=suggestion_id,
            tokens_used=tokens_used,
            metadata=metadata,
            settle_status=settle_status,
        )
        logger.info(
            "History entry #%d recorded for %s (%s by %s)",
            entry.sequence_number, document_id, change_kind.value, actor_id,
        )
        return entry

    def publish_recorded(self, entry: HistoryEntry) -> None:
        if self.events is None:
            return
        self.events.publish(
            HISTORY_RECORDED,
            document_id=entry.document_id,
            entry_id=entry.id,
            sequence_number=entry.sequence_number,
            change_kind=entry.change_kind.value,
            actor_id=entry.actor_id,
        )

    def get_history(
        self, document_id: str, filters: Optional[HistoryFilter] = None
    ) -> List[HistoryEntry]:
        filters = filters or HistoryFilter()
        return self.repository.list_history(
            document_id,
            change_kind=filters.change_kind,
            actor_id=filters.actor_id,
            since=filters.since,
            until=filters.until,
            limit=filters.limit,
        )

    def statistics(self, document_id: str) -> Dict[str, Any]:
        entries = self.repository.list_history(document_id)
        by_kind = Counter(entry.change_kind.value for entry in entries)
        contributors = sorted({entry.actor_id for entry in entries})
        return {
            "document_id": document_id,
            "total_changes": len(entries),
            "total_tokens": sum(entry.tokens_used for entry in entries),
            "by_change_kind": dict(by_kind),
            "contributors": contributors,
            "first_change_at": entries[0].created_at if entries else None,
            "last_change_at": entries[-1].created_at if entries else None,
        }

    def revert(self, history_entry_id: int, actor_id: str) -> HistoryEntry:
        """Restore a document to the content it had before an entry.

        Raises:
            NotFound: Unknown entry or document
            Forbidden: The actor may not edit the document
        """
        target = self.repository.get_history_entry(history_entry_id)
        document_id = target.document_id
        if not self.capabilities.can_edit(actor_id, document_id):
            raise Forbidden(f"{actor_id} may not edit document {document_id}")

        with self.locks.hold(document_id):
            current = self.documents.get_document(document_id).content
            self.documents.update_document(document_id, target.content_before)
            try:
                entry = self.append(
                    document_id,
                    content_before=current,
                    content_after=target.content_before,
                    change_kind=ChangeKind.MANUAL_REVERT,
                    actor_id=actor_id,
                    metadata={"reverted_entry_id": target.id, "reverted_sequence": target.sequence_number},
                )
            except Exception:
                self.documents.update_document(document_id, current)
                raise

        logger.info("Document %s reverted to before entry #%d by %s", document_id, target.sequence_number, actor_id)
        if self.events is not None:
            self.events.publish(
                CONTENT_REVERTED,
                document_id=document_id,
                reverted_entry_id=target.id,
                entry_id=entry.id,
                actor_id=actor_id,
            )
        self.publish_recorded(entry)
        return entry
