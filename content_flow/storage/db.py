"""
Database connection management.

Provides SQLite connections and the schema shared by every repository.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

DEFAULT_DB_PATH = "content_flow.db"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS document (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS suggestion (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id TEXT NOT NULL,
        workflow_id TEXT,
        author_id TEXT NOT NULL,
        original_content TEXT NOT NULL DEFAULT '',
        suggested_content TEXT NOT NULL,
        kind TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        confidence REAL,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        processed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_suggestion_document ON suggestion (document_id, status)",
    """
    CREATE TABLE IF NOT EXISTS history_entry (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id TEXT NOT NULL,
        sequence_number INTEGER NOT NULL,
        suggestion_id INTEGER REFERENCES suggestion (id) ON DELETE SET NULL,
        actor_id TEXT NOT NULL,
        change_kind TEXT NOT NULL,
        content_before TEXT NOT NULL,
        content_after TEXT NOT NULL,
        diff TEXT NOT NULL,
        tokens_used INTEGER NOT NULL DEFAULT 0,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        UNIQUE (document_id, sequence_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_window (
        subject_id TEXT NOT NULL,
        dimension TEXT NOT NULL,
        window_start REAL NOT NULL,
        window_seconds INTEGER NOT NULL,
        request_count INTEGER NOT NULL DEFAULT 0,
        token_count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (subject_id, dimension)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_event (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        subject_id TEXT NOT NULL,
        provider_id TEXT NOT NULL,
        model TEXT NOT NULL,
        input_tokens INTEGER NOT NULL,
        output_tokens INTEGER NOT NULL,
        total_tokens INTEGER NOT NULL,
        estimated_cost REAL NOT NULL,
        succeeded INTEGER NOT NULL DEFAULT 1,
        fingerprint TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_entry (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        created_at REAL NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
)


def as_utc(value: datetime) -> datetime:
    """Convert to UTC. Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_isoformat(value: datetime) -> str:
    """Render a datetime the way timestamps are stored, for range comparisons.

    Stored timestamps are UTC ISO-8601 text and compare as strings, so bounds
    in any other zone must be converted first.
    """
    return as_utc(value).isoformat()


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=10.0)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create every content-flow table that does not exist yet.

    history_entry and usage_event are append-only: nothing in the package
    issues UPDATE against them, and rows go away only through document
    deletion.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()
