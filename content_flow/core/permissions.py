"""
Edit-permission collaborators.

Authentication lives with the host application; the core only asks whether
an actor may edit a document.
"""

from typing import Dict, Iterable, Optional, Protocol, Set


class CapabilityChecker(Protocol):
    def can_edit(self, actor_id: str, document_id: str) -> bool:
        ...


class AllowAllCapabilityChecker:
    """Grants every edit. For single-user tools and the CLI."""

    def can_edit(self, actor_id: str, document_id: str) -> bool:
        return True


class StaticCapabilityChecker:
    """Allow-list of editors per document, plus global editors."""

    def __init__(
        self,
        editors: Optional[Dict[str, Iterable[str]]] = None,
        global_editors: Iterable[str] = ()
    ):
        self._editors: Dict[str, Set[str]] = {
            document_id: set(actors) for document_id, actors in (editors or {}).items()
        }
        self._global_editors = set(global_editors)

    def grant(self, actor_id: str, document_id: str) -> None:
        self._editors.setdefault(document_id, set()).add(actor_id)

    def revoke(self, actor_id: str, document_id: str) -> None:
        self._editors.get(document_id, set()).discard(actor_id)

    def can_edit(self, actor_id: str, document_id: str) -> bool:
        if actor_id in self._global_editors:
            return True
        return actor_id in self._editors.get(document_id, set())
