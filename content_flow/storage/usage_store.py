"""
Usage windows and usage events for the quota ledger.

A store keeps one active window per subject per dimension. Windows roll
over lazily: the first access after ``window_seconds`` have elapsed starts a
fresh window at that moment. ``consume`` is the only write path for
counters and is atomic per subject and dimension.
"""

import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from content_flow.core.errors import LedgerBackendError
from .db import DEFAULT_DB_PATH, as_utc, get_connection, initialize_schema, utc_isoformat
from .models import UsageDimension, UsageEvent, UsageWindow


class UsageStore(Protocol):
    def current(
        self, subject_id: str, dimension: UsageDimension, window_seconds: int, now: float
    ) -> UsageWindow:
        """Return the active window without modifying stored counters."""
        ...

    def consume(
        self,
        subject_id: str,
        dimension: UsageDimension,
        window_seconds: int,
        now: float,
        requests: int = 0,
        tokens: int = 0
    ) -> UsageWindow:
        """Add to the active window (rolling it over first if needed) and return it."""
        ...

    def append_event(self, event: UsageEvent) -> None:
        ...

    def list_events(self, subject_id: str, since: Optional[datetime] = None) -> List[UsageEvent]:
        ...


def _fresh_window(
    subject_id: str, dimension: UsageDimension, window_seconds: int, now: float
) -> UsageWindow:
    return UsageWindow(
        subject_id=subject_id,
        dimension=dimension,
        window_start=now,
        window_seconds=window_seconds,
    )


class MemoryUsageStore:
    """Process-local usage store. Counters are lost on restart."""

    def __init__(self):
        self._lock = threading.Lock()
        self._windows: Dict[Tuple[str, UsageDimension], UsageWindow] = {}
        self._events: List[UsageEvent] = []

    def _active(
        self, subject_id: str, dimension: UsageDimension, window_seconds: int, now: float
    ) -> UsageWindow:
        window = self._windows.get((subject_id, dimension))
        if window is None or window.window_seconds != window_seconds or window.is_expired(now):
            window = _fresh_window(subject_id, dimension, window_seconds, now)
            self._windows[(subject_id, dimension)] = window
        return window

    def current(
        self, subject_id: str, dimension: UsageDimension, window_seconds: int, now: float
    ) -> UsageWindow:
        with self._lock:
            window = self._active(subject_id, dimension, window_seconds, now)
            return UsageWindow(**vars(window))

    def consume(
        self,
        subject_id: str,
        dimension: UsageDimension,
        window_seconds: int,
        now: float,
        requests: int = 0,
        tokens: int = 0
    ) -> UsageWindow:
        with self._lock:
            window = self._active(subject_id, dimension, window_seconds, now)
            window.request_count += requests
            window.token_count += tokens
            return UsageWindow(**vars(window))

    def append_event(self, event: UsageEvent) -> None:
        with self._lock:
            self._events.append(event)

    def list_events(self, subject_id: str, since: Optional[datetime] = None) -> List[UsageEvent]:
        if since is not None:
            since = as_utc(since)
        with self._lock:
            return [
                e for e in self._events
                if e.subject_id == subject_id and (since is None or e.timestamp >= since)
            ]


def _row_to_event(row: tuple) -> UsageEvent:
    return UsageEvent(
        timestamp=datetime.fromisoformat(row[0]),
        subject_id=row[1],
        provider_id=row[2],
        model=row[3],
        input_tokens=row[4],
        output_tokens=row[5],
        total_tokens=row[6],
        estimated_cost=row[7],
        succeeded=bool(row[8]),
        fingerprint=row[9],
    )


class SqliteUsageStore:
    """Usage store shared by every process using the same database file."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        initialize_schema(db_path)

    @staticmethod
    def _read(
        conn: sqlite3.Connection, subject_id: str, dimension: UsageDimension
    ) -> Optional[UsageWindow]:
        row = conn.execute(
            """
            SELECT window_start, window_seconds, request_count, token_count
            FROM usage_window WHERE subject_id = ? AND dimension = ?
            """,
            (subject_id, dimension.value),
        ).fetchone()
        if row is None:
            return None
        return UsageWindow(
            subject_id=subject_id,
            dimension=dimension,
            window_start=row[0],
            window_seconds=row[1],
            request_count=row[2],
            token_count=row[3],
        )

    def current(
        self, subject_id: str, dimension: UsageDimension, window_seconds: int, now: float
    ) -> UsageWindow:
        try:
            conn = get_connection(self.db_path)
            try:
                window = self._read(conn, subject_id, dimension)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerBackendError(f"Reading usage window failed: {e}") from e

        if window is None or window.window_seconds != window_seconds or window.is_expired(now):
            return _fresh_window(subject_id, dimension, window_seconds, now)
        return window

    def consume(
        self,
        subject_id: str,
        dimension: UsageDimension,
        window_seconds: int,
        now: float,
        requests: int = 0,
        tokens: int = 0
    ) -> UsageWindow:
        try:
            conn = get_connection(self.db_path)
            try:
                # The read-modify-write happens under SQLite's write lock.
                conn.execute("BEGIN IMMEDIATE")
                window = self._read(conn, subject_id, dimension)
                if window is None or window.window_seconds != window_seconds or window.is_expired(now):
                    window = _fresh_window(subject_id, dimension, window_seconds, now)
                window.request_count += requests
                window.token_count += tokens
                conn.execute(
                    """
                    INSERT OR REPLACE INTO usage_window
                    (subject_id, dimension, window_start, window_seconds, request_count, token_count)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        subject_id,
                        dimension.value,
                        window.window_start,
                        window.window_seconds,
                        window.request_count,
                        window.token_count,
                    ),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerBackendError(f"Updating usage window failed: {e}") from e
        return window

    def append_event(self, event: UsageEvent) -> None:
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT INTO usage_event
                    (timestamp, subject_id, provider_id, model, input_tokens, output_tokens,
                     total_tokens, estimated_cost, succeeded, fingerprint)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.timestamp.isoformat(),
                        event.subject_id,
                        event.provider_id,
                        event.model,
                        event.input_tokens,
                        event.output_tokens,
                        event.total_tokens,
                        event.estimated_cost,
                        int(event.succeeded),
                        event.fingerprint,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerBackendError(f"Appending usage event failed: {e}") from e

    def list_events(self, subject_id: str, since: Optional[datetime] = None) -> List[UsageEvent]:
        query = """
            SELECT timestamp, subject_id, provider_id, model, input_tokens, output_tokens,
                   total_tokens, estimated_cost, succeeded, fingerprint
            FROM usage_event WHERE subject_id = ?
        """
        params: List[object] = [subject_id]
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(utc_isoformat(since))
        query += " ORDER BY id ASC"

        try:
            conn = get_connection(self.db_path)
            try:
                rows = conn.execute(query, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerBackendError(f"Reading usage events failed: {e}") from e
        return [_row_to_event(row) for row in rows]


def summarize_events(events: List[UsageEvent], days: Optional[int] = None) -> Dict[str, float]:
    """Aggregate usage events into request, token and cost totals.

    Args:
        events: Events for one subject
        days: Only count events from the last N days

    Returns:
        Dictionary containing usage statistics
    """
    if days is not None:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        events = [e for e in events if e.timestamp >= cutoff]

    succeeded = [e for e in events if e.succeeded]
    total_cost = sum(e.estimated_cost for e in events)
    return {
        "total_requests": len(succeeded),
        "failed_requests": len(events) - len(succeeded),
        "total_tokens": sum(e.total_tokens for e in events),
        "total_cost": round(total_cost, 6),
        "avg_cost": round(total_cost / len(events), 6) if events else 0.0,
    }
