"""
SQLite foundation for the message log and embedding store.
Both tables live in one database so an embedding and its message link commit together.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import get_db_path, ensure_db_directory
from .schema import text_has_content

# Seconds a writer waits on another connection's lock before failing
BUSY_TIMEOUT_SEC = 10.0


def _connect(db_path: str = None) -> sqlite3.Connection:
    if db_path is None:
        ensure_db_directory()
        db_path = get_db_path()
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SEC)
    conn.execute("PRAGMA foreign_keys = ON")
    # Blank-content filtering in SQL uses the same rule as Message.has_content
    conn.create_function("has_content", 1, text_has_content, deterministic=True)
    return conn


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = _connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def get_transaction(db_path: str = None, immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
    """
    Get a connection whose work is committed on success and rolled back on any error.

    immediate=True takes the database write lock up front (BEGIN IMMEDIATE).
    """
    conn = _connect(db_path)
    try:
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Embeddings are immutable once written; one per source entity
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS embeddings (
                id TEXT PRIMARY KEY,
                source_type TEXT NOT NULL,
                source_id TEXT NOT NULL,
                content TEXT NOT NULL,
                vector BLOB NOT NULL,
                dimension INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (source_type, source_id)
            )
        ''')

        # Append-only message log; embedding_id is set once by the pipeline
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                author_name TEXT,
                content TEXT NOT NULL DEFAULT '',
                sequence_number INTEGER NOT NULL UNIQUE,
                created_at TEXT NOT NULL,
                embedding_id TEXT UNIQUE REFERENCES embeddings(id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS sequence_counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        ''')

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS ix_messages_conversation_sequence ON messages(conversation_id, sequence_number)')
        cursor.execute('CREATE INDEX IF NOT EXISTS ix_messages_created_at ON messages(created_at)')
        cursor.execute('CREATE INDEX IF NOT EXISTS ix_messages_pending ON messages(sequence_number) WHERE embedding_id IS NULL')
        cursor.execute('CREATE INDEX IF NOT EXISTS ix_embeddings_created_at ON embeddings(created_at)')

        conn.commit()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = cursor.fetchall()

            # Check if required tables exist
            table_names = [table[0] for table in tables]
            required_tables = ['messages', 'embeddings', 'sequence_counters']

            return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
