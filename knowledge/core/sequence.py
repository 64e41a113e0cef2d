"""
Global sequence number allocation for the message log.

Counters live in the sequence_counters table and are bumped inside the caller's
transaction, so a rolled-back append never consumes a number and a committed
number is never handed out twice.
"""

import sqlite3
import threading

from .errors import StorageError


class SequenceAllocator:
    """Serialized allocator for one named, strictly increasing counter."""

    def __init__(self, name: str):
        if not name or not name.strip():
            raise ValueError("Sequence name cannot be empty")
        self.name = name
        self._lock = threading.Lock()

    def next_value(self, conn: sqlite3.Connection) -> int:
        """
        Reserve the next value on an open connection.

        Callers open the transaction with BEGIN IMMEDIATE so SQLite's write lock is
        held before the in-process lock is taken; other connections queue on the
        database lock until the caller commits or rolls back.
        """
        with self._lock:
            try:
                cursor = conn.cursor()
                cursor.execute(
                    "INSERT OR IGNORE INTO sequence_counters (name, value) VALUES (?, 0)",
                    (self.name,)
                )
                cursor.execute(
                    "UPDATE sequence_counters SET value = value + 1 WHERE name = ?",
                    (self.name,)
                )
                cursor.execute(
                    "SELECT value FROM sequence_counters WHERE name = ?",
                    (self.name,)
                )
                row = cursor.fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to allocate sequence number from '{self.name}': {e}") from e

        if row is None:
            raise StorageError(f"Sequence counter '{self.name}' is missing")
        return row[0]

    def current_value(self, conn: sqlite3.Connection) -> int:
        """Last value handed out, or 0 if none."""
        try:
            row = conn.execute(
                "SELECT value FROM sequence_counters WHERE name = ?",
                (self.name,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read sequence '{self.name}': {e}") from e
        return row[0] if row else 0
