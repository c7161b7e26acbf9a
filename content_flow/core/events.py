"""
In-process event channel.

Components publish a ContentEvent after a transition has been committed.
Subscribers are plain callables; one failing subscriber is logged and the
rest still run.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

CONTENT_GENERATED = "content.generated"
SUGGESTION_CREATED = "suggestion.created"
SUGGESTION_ACCEPTED = "suggestion.accepted"
SUGGESTION_REJECTED = "suggestion.rejected"
CONTENT_REVERTED = "content.reverted"
HISTORY_RECORDED = "history.recorded"

EVENT_NAMES = (
    CONTENT_GENERATED,
    SUGGESTION_CREATED,
    SUGGESTION_ACCEPTED,
    SUGGESTION_REJECTED,
    CONTENT_REVERTED,
    HISTORY_RECORDED,
)


@dataclass(frozen=True)
class ContentEvent:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[ContentEvent], None]


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Subscriber:
        """Register a callback for every event. Returns it for use as a decorator."""
        with self._lock:
            self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Subscriber) -> bool:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                return False
            return True

    def publish(self, name: str, **payload: Any) -> ContentEvent:
        event = ContentEvent(name=name, payload=payload)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %r failed handling %s", callback, name)
        return event
