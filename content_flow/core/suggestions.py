"""
Suggestion lifecycle.

A provider result becomes a Suggestion that waits for review. Accepting it
merges the text into the document; rejecting it leaves the document alone.
Either way the decision is recorded in the document's history, and a
suggestion is decided exactly once.

Merge policy on accept:
- empty ``original_content``: the suggestion is appended to the document
  (or becomes the document, if it is empty)
- otherwise: the first literal occurrence of ``original_content`` is
  replaced; if it is gone, StaleSuggestion is raised and nothing changes
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import AlreadyProcessed, Forbidden, InvalidParameter, StaleSuggestion
from .events import SUGGESTION_ACCEPTED, SUGGESTION_CREATED, SUGGESTION_REJECTED, EventBus
from .history import HistoryEngine
from .locking import DocumentLocks
from .permissions import CapabilityChecker
from .requests import ProviderResult
from content_flow.storage.documents import DocumentStore
from content_flow.storage.models import ChangeKind, Suggestion, SuggestionKind, SuggestionStatus
from content_flow.storage.repository import ContentRepository

logger = logging.getLogger(__name__)

APPEND_SEPARATOR = "\n\n"

_ACCEPT_CHANGE_KIND = {
    SuggestionKind.GENERATION: ChangeKind.AI_GENERATED,
    SuggestionKind.IMPROVEMENT: ChangeKind.AI_IMPROVED,
    SuggestionKind.CORRECTION: ChangeKind.AI_IMPROVED,
}


def merge_suggestion(document_content: str, suggestion: Suggestion) -> str:
    """Apply a suggestion to the current document text.

    Raises:
        StaleSuggestion: If the text the suggestion replaces is no longer present
    """
    if not suggestion.original_content:
        if not document_content:
            return suggestion.suggested_content
        return document_content.rstrip("\n") + APPEND_SEPARATOR + suggestion.suggested_content

    if suggestion.original_content not in document_content:
        raise StaleSuggestion(
            f"Suggestion {suggestion.id} no longer matches document {suggestion.target_document_id}"
        )
    return document_content.replace(suggestion.original_content, suggestion.suggested_content, 1)


class SuggestionManager:
    """Creates suggestions and drives them to Accepted or Rejected."""

    def __init__(
        self,
        repository: ContentRepository,
        documents: DocumentStore,
        capabilities: CapabilityChecker,
        history: HistoryEngine,
        locks: Optional[DocumentLocks] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time
    ):
        self.repository = repository
        self.documents = documents
        self.capabilities = capabilities
        self.history = history
        self.locks = locks or history.locks
        self.events = events
        self._clock = clock

    def create(
        self,
        result: ProviderResult,
        target_document_id: str,
        workflow_id: Optional[str],
        author_id: str,
        original_content: str = "",
        kind: Optional[SuggestionKind] = None,
        confidence: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Suggestion:
        """Store a provider result as a pending suggestion.

        Raises:
            InvalidParameter: Empty result content or confidence outside [0, 1]
        """
        if not result.content.strip():
            raise InvalidParameter("Cannot create a suggestion from empty content")
        if kind is None:
            kind = SuggestionKind.GENERATION if not original_content else SuggestionKind.IMPROVEMENT
        if confidence is None:
            confidence = result.raw_metadata.get("confidence")
        if confidence is not None and not 0.0 <= float(confidence) <= 1.0:
            raise InvalidParameter(f"confidence must be between 0 and 1, got {confidence}")

        merged_metadata: Dict[str, Any] = dict(metadata or {})
        merged_metadata.update({
            "token_usage": result.token_usage.to_dict(),
            "model": result.model,
            "provider_id": result.provider_id,
        })

        suggestion = self.repository.insert_suggestion(
            document_id=target_document_id,
            workflow_id=workflow_id,
            author_id=author_id,
            original_content=original_content,
            suggested_content=result.content,
            kind=kind,
            confidence=float(confidence) if confidence is not None else None,
            created_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            metadata=merged_metadata,
        )
        logger.info(
            "Suggestion %d created for %s (%s by %s)",
            suggestion.id, target_document_id, kind.value, author_id,
        )
        if self.events is not None:
            self.events.publish(
                SUGGESTION_CREATED,
                suggestion_id=suggestion.id,
                document_id=target_document_id,
                kind=kind.value,
                author_id=author_id,
            )
        return suggestion

    def get(self, suggestion_id: int) -> Suggestion:
        return self.repository.get_suggestion(suggestion_id)

    def list_for_document(
        self, document_id: str, status: Optional[SuggestionStatus] = None
    ) -> List[Suggestion]:
        return self.repository.list_suggestions(document_id, status)

    def _check_permission(self, suggestion: Suggestion, actor_id: str) -> None:
        if not self.capabilities.can_edit(actor_id, suggestion.target_document_id):
            raise Forbidden(f"{actor_id} may not edit document {suggestion.target_document_id}")

    def accept(self, suggestion_id: int, actor_id: str) -> Suggestion:
        """Merge a pending suggestion into its document.

        Raises:
            NotFound: Unknown suggestion or document
            Forbidden: The actor may not edit the document
            AlreadyProcessed: The suggestion was already decided
            StaleSuggestion: The replaced text is gone from the document
        """
        suggestion = self.repository.get_suggestion(suggestion_id)
        self._check_permission(suggestion, actor_id)
        document_id = suggestion.target_document_id

        with self.locks.hold(document_id):
            current = self.documents.get_document(document_id).content
            # Status is checked again inside the history transaction.
            suggestion = self.repository.get_suggestion(suggestion_id)
            if suggestion.status.is_terminal:
                raise AlreadyProcessed(f"Suggestion {suggestion_id} is already {suggestion.status.value}")
            updated = merge_suggestion(current, suggestion)

            self.documents.update_document(document_id, updated)
            try:
                entry = self.history.append(
                    document_id,
                    content_before=current,
                    content_after=updated,
                    change_kind=_ACCEPT_CHANGE_KIND[suggestion.kind],
                    actor_id=actor_id,
                    suggestion_id=suggestion.id,
                    tokens_used=_tokens_of(suggestion),
                    metadata={"workflow_id": suggestion.source_workflow_id},
                    settle_status=SuggestionStatus.ACCEPTED,
                )
            except Exception:
                self.documents.update_document(document_id, current)
                raise

        logger.info("Suggestion %d accepted by %s", suggestion_id, actor_id)
        if self.events is not None:
            self.events.publish(
                SUGGESTION_ACCEPTED,
                suggestion_id=suggestion_id,
                document_id=document_id,
                actor_id=actor_id,
                entry_id=entry.id,
            )
        self.history.publish_recorded(entry)
        return self.repository.get_suggestion(suggestion_id)

    def reject(self, suggestion_id: int, actor_id: str) -> Suggestion:
        """Close a pending suggestion without touching the document.

        Raises:
            NotFound: Unknown suggestion or document
            Forbidden: The actor may not edit the document
            AlreadyProcessed: The suggestion was already decided
        """
        suggestion = self.repository.get_suggestion(suggestion_id)
        self._check_permission(suggestion, actor_id)
        document_id = suggestion.target_document_id

        with self.locks.hold(document_id):
            current = self.documents.get_document(document_id).content
            entry = self.history.append(
                document_id,
                content_before=current,
                content_after=current,
                change_kind=ChangeKind.AI_REJECTED,
                actor_id=actor_id,
                suggestion_id=suggestion.id,
                metadata={"workflow_id": suggestion.source_workflow_id},
                settle_status=SuggestionStatus.REJECTED,
            )

        logger.info("Suggestion %d rejected by %s", suggestion_id, actor_id)
        if self.events is not None:
            self.events.publish(
                SUGGESTION_REJECTED,
                suggestion_id=suggestion_id,
                document_id=document_id,
                actor_id=actor_id,
                entry_id=entry.id,
            )
        self.history.publish_recorded(entry)
        return self.repository.get_suggestion(suggestion_id)


def _tokens_of(suggestion: Suggestion) -> int:
    usage = suggestion.metadata.get("token_usage") or {}
    return int(usage.get("total", 0))
