"""Per-document mutual exclusion for content transitions."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class DocumentLocks:
    """Hands out one lock per document id.

    Accept, reject and revert on the same document run one at a time;
    different documents proceed in parallel. A document's entry lives only
    while some thread holds or waits for it, so the table stays as small as
    the number of documents currently in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # document id -> [lock, holders and waiters]
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, document_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(document_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[document_id] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[document_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
