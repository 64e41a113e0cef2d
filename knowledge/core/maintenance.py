"""
Maintenance routines for the message log and embedding store.
Checks the message/embedding link invariants and removes orphaned embeddings.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import get_vector_store, is_maintenance_enabled
from .dao import MESSAGE_SEQUENCE, count_pending, message_sequence
from .db import get_db
from .errors import MaintenanceError, StorageError
from ..util.logging import logger


@dataclass
class MaintenanceReport:
    """Maintenance operation report."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = None
    recommendations: List[str] = None
    errors: List[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.actions_taken is None:
            self.actions_taken = []
        if self.recommendations is None:
            self.recommendations = []
        if self.errors is None:
            self.errors = []
        if self.metadata is None:
            self.metadata = {}

    @property
    def healthy(self) -> bool:
        return self.issues_found == self.issues_resolved and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "recommendations": self.recommendations,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


def _require_enabled():
    if not is_maintenance_enabled():
        raise MaintenanceError("Maintenance system is disabled. Enable with MAINTENANCE_ENABLED=true")


def _scalar(cursor, sql: str, params=()) -> int:
    cursor.execute(sql, params)
    row = cursor.fetchone()
    return row[0] if row and row[0] is not None else 0


def check_embedding_links() -> MaintenanceReport:
    """
    Verify that messages and embeddings are linked one-to-one.

    Counts dangling links, links whose embedding belongs to another message,
    unreferenced embeddings, mixed vector dimensions and the pending backlog.
    """
    _require_enabled()

    report = MaintenanceReport(
        operation="embedding_link_check",
        started_at=datetime.now()
    )

    try:
        with get_db() as conn:
            cursor = conn.cursor()

            cursor.execute("PRAGMA integrity_check")
            integrity_result = cursor.fetchone()
            if integrity_result and integrity_result[0] == "ok":
                report.metadata["integrity_status"] = "passed"
            else:
                report.issues_found += 1
                report.errors.append(f"Integrity check failed: {integrity_result}")
                report.recommendations.append("Restore the database from a known-good copy")

            dangling = _scalar(cursor, '''
                SELECT COUNT(*) FROM messages m
                LEFT JOIN embeddings e ON e.id = m.embedding_id
                WHERE m.embedding_id IS NOT NULL AND e.id IS NULL
            ''')
            mismatched = _scalar(cursor, '''
                SELECT COUNT(*) FROM messages m
                JOIN embeddings e ON e.id = m.embedding_id
                WHERE e.source_id != m.id
            ''')
            orphaned = _scalar(cursor, '''
                SELECT COUNT(*) FROM embeddings
                WHERE id NOT IN (SELECT embedding_id FROM messages WHERE embedding_id IS NOT NULL)
            ''')
            max_sequence = _scalar(cursor, "SELECT MAX(sequence_number) FROM messages")
            allocated_sequence = message_sequence.current_value(conn)

            cursor.execute("SELECT source_type, dimension, COUNT(*) FROM embeddings GROUP BY source_type, dimension")
            dimensions = cursor.fetchall()

        pending = count_pending()

        report.metadata.update({
            "dangling_links": dangling,
            "mismatched_links": mismatched,
            "orphaned_embeddings": orphaned,
            "pending_messages": pending,
            "max_sequence_number": max_sequence,
            "allocated_sequence_number": allocated_sequence,
            "dimensions": {f"{source_type}:{dimension}": count for source_type, dimension, count in dimensions}
        })

        if dangling:
            report.issues_found += 1
            report.errors.append(f"{dangling} messages reference a missing embedding")
        if mismatched:
            report.issues_found += 1
            report.errors.append(f"{mismatched} messages reference an embedding of another message")
        if orphaned:
            report.issues_found += 1
            report.recommendations.append("Run cleanup_orphaned_embeddings to remove unreferenced embeddings")
        if allocated_sequence < max_sequence:
            report.issues_found += 1
            report.errors.append(
                f"Sequence '{MESSAGE_SEQUENCE}' is behind the log ({allocated_sequence} < {max_sequence})"
            )

        source_types = {source_type for source_type, _, _ in dimensions}
        if len(dimensions) > len(source_types):
            report.issues_found += 1
            report.recommendations.append(
                "Embeddings of different dimensions exist; only those matching the current generator are searchable"
            )

    except (sqlite3.Error, StorageError) as e:
        report.errors.append(f"Embedding link check failed: {e}")

    report.completed_at = datetime.now()
    logger.log_operation("maintenance.check_embedding_links", "success" if report.healthy else "issues", {
        "issues_found": report.issues_found,
        "errors": len(report.errors)
    })
    return report


def cleanup_orphaned_embeddings(vector_store=None) -> MaintenanceReport:
    """Delete embeddings that no message references, e.g. after messages were deleted."""
    _require_enabled()

    if vector_store is None:
        vector_store = get_vector_store()

    report = MaintenanceReport(
        operation="orphaned_embedding_cleanup",
        started_at=datetime.now()
    )

    try:
        removed = vector_store.cleanup_orphans()
    except StorageError as e:
        raise MaintenanceError(f"Orphaned embedding cleanup failed: {e}") from e

    report.issues_found = removed
    report.issues_resolved = removed
    report.metadata["removed_embeddings"] = removed
    if removed:
        report.actions_taken.append(f"Removed {removed} orphaned embeddings")

    report.completed_at = datetime.now()
    logger.log_operation("maintenance.cleanup_orphaned_embeddings", "success", {"removed": removed})
    return report
