"""
Repository pattern for data access.

Handles persistence of suggestions and the append-only content history.
JSON columns are encoded on write and decoded on read here and nowhere
else, so the in-memory models never hold an ambiguous type.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from content_flow.core.errors import AlreadyProcessed, NotFound
from .db import DEFAULT_DB_PATH, get_connection, initialize_schema, utc_isoformat
from .models import (
    ChangeKind,
    DiffSummary,
    HistoryEntry,
    Suggestion,
    SuggestionKind,
    SuggestionStatus,
)

_SUGGESTION_COLUMNS = """
    id, document_id, workflow_id, author_id, original_content,
    suggested_content, kind, status, confidence, metadata,
    created_at, processed_at
"""

_HISTORY_COLUMNS = """
    id, document_id, sequence_number, suggestion_id, actor_id, change_kind,
    content_before, content_after, diff, tokens_used, metadata, created_at
"""


def _encode(data: Optional[Dict[str, Any]]) -> str:
    return json.dumps(data or {}, sort_keys=True, default=str)


def _decode(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    decoded = json.loads(raw)
    return decoded if isinstance(decoded, dict) else {}


def _row_to_suggestion(row: tuple) -> Suggestion:
    return Suggestion(
        id=row[0],
        target_document_id=row[1],
        source_workflow_id=row[2],
        author_id=row[3],
        original_content=row[4],
        suggested_content=row[5],
        kind=SuggestionKind(row[6]),
        status=SuggestionStatus(row[7]),
        confidence=row[8],
        metadata=_decode(row[9]),
        created_at=datetime.fromisoformat(row[10]),
        processed_at=datetime.fromisoformat(row[11]) if row[11] else None,
    )


def _row_to_history(row: tuple) -> HistoryEntry:
    return HistoryEntry(
        id=row[0],
        document_id=row[1],
        sequence_number=row[2],
        suggestion_id=row[3],
        actor_id=row[4],
        change_kind=ChangeKind(row[5]),
        content_before=row[6],
        content_after=row[7],
        diff=DiffSummary.from_dict(_decode(row[8])),
        tokens_used=row[9],
        metadata=_decode(row[10]),
        created_at=datetime.fromisoformat(row[11]),
    )


class ContentRepository:
    """Repository for suggestions and content history.

    Each method opens its own connection, so one repository can be shared
    across threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, create_schema: bool = True):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            create_schema: Create missing tables on construction
        """
        self.db_path = db_path
        if create_schema:
            initialize_schema(db_path)

    # Suggestions

    def insert_suggestion(
        self,
        document_id: str,
        workflow_id: Optional[str],
        author_id: str,
        original_content: str,
        suggested_content: str,
        kind: SuggestionKind,
        confidence: Optional[float],
        created_at: datetime,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Suggestion:
        """Store a new suggestion in the pending state."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                INSERT INTO suggestion
                (document_id, workflow_id, author_id, original_content,
                 suggested_content, kind, status, confidence, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document_id,
                    workflow_id,
                    author_id,
                    original_content,
                    suggested_content,
                    kind.value,
                    SuggestionStatus.PENDING.value,
                    confidence,
                    _encode(metadata),
                    created_at.isoformat(),
                ),
            )
            conn.commit()
            suggestion_id = cursor.lastrowid
        finally:
            conn.close()
        return self.get_suggestion(suggestion_id)

    def get_suggestion(self, suggestion_id: int) -> Suggestion:
        """Fetch one suggestion.

        Raises:
            NotFound: If no suggestion has that id
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_SUGGESTION_COLUMNS} FROM suggestion WHERE id = ?",
                (suggestion_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound(f"Suggestion {suggestion_id} not found")
        return _row_to_suggestion(row)

    def list_suggestions(
        self,
        document_id: str,
        status: Optional[SuggestionStatus] = None
    ) -> List[Suggestion]:
        """List a document's suggestions, oldest first."""
        query = f"SELECT {_SUGGESTION_COLUMNS} FROM suggestion WHERE document_id = ?"
        params: List[Any] = [document_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY id ASC"

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_suggestion(row) for row in rows]

    # History

    def append_history(
        self,
        document_id: str,
        actor_id: str,
        content_before: str,
        content_after: str,
        change_kind: ChangeKind,
        diff: DiffSummary,
        created_at: datetime,
        suggestion_id: Optional[int] = None,
        tokens_used: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
        settle_status: Optional[SuggestionStatus] = None
    ) -> HistoryEntry:
        """Append a history entry with the document's next sequence number.

        When ``settle_status`` is given, the suggestion is moved out of the
        pending state in the same transaction, so the history entry and the
        status change are committed together or not at all.

        Raises:
            AlreadyProcessed: If the suggestion is no longer pending
            NotFound: If the suggestion does not exist
        """
        conn = get_connection(self.db_path)
        try:
            # IMMEDIATE takes the write lock before reading MAX(), so two
            # writers cannot allocate the same sequence number.
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence_number), 0) FROM history_entry WHERE document_id = ?",
                (document_id,),
            ).fetchone()
            sequence_number = row[0] + 1

            if settle_status is not None:
                self._settle(conn, suggestion_id, settle_status, created_at)

            cursor = conn.execute(
                """
                INSERT INTO history_entry
                (document_id, sequence_number, suggestion_id, actor_id, change_kind,
                 content_before, content_after, diff, tokens_used, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document_id,
                    sequence_number,
                    suggestion_id,
                    actor_id,
                    change_kind.value,
                    content_before,
                    content_after,
                    _encode(diff.to_dict()),
                    tokens_used,
                    _encode(metadata),
                    created_at.isoformat(),
                ),
            )
            conn.commit()
            entry_id = cursor.lastrowid
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return self.get_history_entry(entry_id)

    @staticmethod
    def _settle(
        conn: sqlite3.Connection,
        suggestion_id: Optional[int],
        status: SuggestionStatus,
        processed_at: datetime
    ) -> None:
        if suggestion_id is None:
            raise ValueError("suggestion_id is required to settle a suggestion")
        if not status.is_terminal:
            raise ValueError("a suggestion can only be settled into a terminal status")

        cursor = conn.execute(
            "UPDATE suggestion SET status = ?, processed_at = ? WHERE id = ? AND status = ?",
            (status.value, processed_at.isoformat(), suggestion_id, SuggestionStatus.PENDING.value),
        )
        if cursor.rowcount == 1:
            return

        row = conn.execute("SELECT status FROM suggestion WHERE id = ?", (suggestion_id,)).fetchone()
        if row is None:
            raise NotFound(f"Suggestion {suggestion_id} not found")
        raise AlreadyProcessed(f"Suggestion {suggestion_id} is already {row[0]}")

    def get_history_entry(self, entry_id: int) -> HistoryEntry:
        """Fetch one history entry.

        Raises:
            NotFound: If no entry has that id
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_HISTORY_COLUMNS} FROM history_entry WHERE id = ?",
                (entry_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound(f"History entry {entry_id} not found")
        return _row_to_history(row)

    def list_history(
        self,
        document_id: str,
        change_kind: Optional[ChangeKind] = None,
        actor_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[HistoryEntry]:
        """Get a document's history with optional filtering.

        Returns:
            Entries ordered by sequence_number (oldest first)
        """
        query = f"SELECT {_HISTORY_COLUMNS} FROM history_entry WHERE document_id = ?"
        params: List[Any] = [document_id]

        if change_kind is not None:
            query += " AND change_kind = ?"
            params.append(change_kind.value)
        if actor_id is not None:
            query += " AND actor_id = ?"
            params.append(actor_id)
        if since is not None:
            query += " AND created_at >= ?"
            params.append(utc_isoformat(since))
        if until is not None:
            query += " AND created_at <= ?"
            params.append(utc_isoformat(until))

        query += " ORDER BY sequence_number ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_history(row) for row in rows]

    def delete_document_records(self, document_id: str) -> int:
        """Remove a document's history and suggestions (cascade on document delete).

        Returns:
            Number of rows removed
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            removed = conn.execute(
                "DELETE FROM history_entry WHERE document_id = ?", (document_id,)
            ).rowcount
            removed += conn.execute(
                "DELETE FROM suggestion WHERE document_id = ?", (document_id,)
            ).rowcount
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return removed
