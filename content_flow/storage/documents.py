"""
Document store collaborators.

The core only needs to read a document's content and write it back. Hosts
plug in their own store; two implementations ship with the package.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from content_flow.core.errors import NotFound
from .db import DEFAULT_DB_PATH, get_connection, initialize_schema


@dataclass(frozen=True)
class Document:
    id: str
    content: str
    title: str = ""


class DocumentStore(Protocol):
    """What the suggestion and history engines need from a document store."""

    def get_document(self, document_id: str) -> Document:
        """Return the document, or raise NotFound."""
        ...

    def update_document(self, document_id: str, content: str) -> None:
        """Atomically replace the document's content, or raise NotFound."""
        ...


class InMemoryDocumentStore:
    """Process-local store, used by tests and the demo."""

    def __init__(self, documents: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._documents: Dict[str, Document] = {}
        for document_id, content in (documents or {}).items():
            self._documents[document_id] = Document(id=document_id, content=content)

    def create_document(self, document_id: str, content: str = "", title: str = "") -> Document:
        with self._lock:
            document = Document(id=document_id, content=content, title=title)
            self._documents[document_id] = document
            return document

    def get_document(self, document_id: str) -> Document:
        with self._lock:
            try:
                return self._documents[document_id]
            except KeyError:
                raise NotFound(f"Document {document_id} not found") from None

    def update_document(self, document_id: str, content: str) -> None:
        with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise NotFound(f"Document {document_id} not found")
            self._documents[document_id] = Document(id=document_id, content=content, title=current.title)

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            if self._documents.pop(document_id, None) is None:
                raise NotFound(f"Document {document_id} not found")


class SqliteDocumentStore:
    """Documents kept in the content-flow database itself."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self._clock = clock
        initialize_schema(db_path)

    def create_document(self, document_id: str, content: str = "", title: str = "") -> Document:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO document (id, title, content, updated_at) VALUES (?, ?, ?, ?)",
                (document_id, title, content, self._clock()),
            )
            conn.commit()
        finally:
            conn.close()
        return Document(id=document_id, content=content, title=title)

    def get_document(self, document_id: str) -> Document:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, content, title FROM document WHERE id = ?", (document_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound(f"Document {document_id} not found")
        return Document(id=row[0], content=row[1], title=row[2])

    def update_document(self, document_id: str, content: str) -> None:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE document SET content = ?, updated_at = ? WHERE id = ?",
                (content, self._clock(), document_id),
            )
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise NotFound(f"Document {document_id} not found")

    def delete_document(self, document_id: str) -> None:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM document WHERE id = ?", (document_id,))
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise NotFound(f"Document {document_id} not found")
