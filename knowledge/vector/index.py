"""
Vector store over the SQLite embeddings table.
Embedding creation and message linking share one transaction.
"""

from abc import ABC, abstractmethod
import sqlite3
from typing import List, Optional, Sequence

import numpy as np

from .types import EmbeddingRecord, QueryResult
from ..core.dao import link_embedding
from ..core.db import get_db, get_transaction
from ..core.errors import StorageError
from ..core.schema import from_db_timestamp, to_db_timestamp
from ..util.logging import logger

EMBEDDING_COLUMNS = "id, source_type, source_id, content, vector, created_at"


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    @abstractmethod
    def create_embedding_and_link(self, embedding: EmbeddingRecord, message_id: str) -> EmbeddingRecord:
        """Persist an embedding and set it on its message; both commit or neither does."""
        pass

    @abstractmethod
    def query_nearest(self, source_type: str, query_vector: Sequence[float], max_distance: float, top_k: int) -> List[QueryResult]:
        """Embeddings within max_distance (cosine) of the query, nearest first, at most top_k."""
        pass

    @abstractmethod
    def get_embedding(self, embedding_id: str) -> Optional[EmbeddingRecord]:
        """Get an embedding record by ID."""
        pass

    @abstractmethod
    def count(self, source_type: str = None) -> int:
        """Count stored embeddings."""
        pass

    @abstractmethod
    def cleanup_orphans(self) -> int:
        """Delete embeddings no message references. Returns number removed."""
        pass


def row_to_embedding(row) -> EmbeddingRecord:
    embedding_id, source_type, source_id, content, vector_blob, created_at = row
    return EmbeddingRecord(
        id=embedding_id,
        source_type=source_type,
        source_id=source_id,
        content=content,
        vector=np.frombuffer(vector_blob, dtype=np.float32).copy(),
        created_at=from_db_timestamp(created_at)
    )


def cosine_distances(matrix: np.ndarray, query_vector: np.ndarray) -> np.ndarray:
    """Cosine distance of each matrix row to the query. Zero-norm vectors get distance 1."""
    matrix = np.asarray(matrix, dtype=np.float64)
    query = np.asarray(query_vector, dtype=np.float64)

    dots = matrix @ query
    denominators = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    similarities = np.divide(dots, denominators, out=np.zeros_like(dots), where=denominators > 0)
    return 1.0 - np.clip(similarities, -1.0, 1.0)


def rank_within_threshold(distances: np.ndarray, max_distance: float, top_k: int) -> List[int]:
    """Positions of distances <= max_distance, ascending, ties in input order, at most top_k."""
    if top_k <= 0 or distances.size == 0:
        return []
    order = np.argsort(distances, kind="stable")
    return [int(i) for i in order if distances[i] <= max_distance][:top_k]


def as_query_vector(query_vector: Sequence[float]) -> np.ndarray:
    query = np.asarray(query_vector, dtype=np.float32)
    if query.ndim != 1 or query.size == 0:
        raise ValueError("Query vector must be a non-empty one-dimensional sequence")
    return query


class SqliteVectorStore(IVectorStore):
    """Embedding store in the message database, scored with numpy brute-force cosine distance."""

    def create_embedding_and_link(self, embedding: EmbeddingRecord, message_id: str) -> EmbeddingRecord:
        vector = np.asarray(embedding.vector, dtype=np.float32)
        if vector.ndim != 1 or vector.size == 0:
            raise ValueError("Embedding vector must be a non-empty one-dimensional array")

        try:
            with get_transaction() as conn:
                conn.execute(
                    f"INSERT INTO embeddings ({EMBEDDING_COLUMNS}, dimension) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (embedding.id, embedding.source_type, embedding.source_id, embedding.content,
                     vector.tobytes(), to_db_timestamp(embedding.created_at), int(vector.size))
                )
                link_embedding(conn, message_id, embedding.id)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store embedding for message '{message_id}': {e}") from e

        logger.log_embedding_operation("created", message_id, {
            "embedding_id": embedding.id,
            "source_type": embedding.source_type,
            "dimension": int(vector.size)
        })
        return embedding

    def _load_candidates(self, source_type: str, dimension: int):
        try:
            with get_db() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"SELECT {EMBEDDING_COLUMNS} FROM embeddings WHERE source_type = ? AND dimension = ? ORDER BY rowid",
                    (source_type, dimension)
                )
                return cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query embeddings: {e}") from e

    def query_nearest(self, source_type: str, query_vector: Sequence[float], max_distance: float, top_k: int) -> List[QueryResult]:
        query = as_query_vector(query_vector)
        if top_k <= 0:
            return []

        # Vectors of another dimension come from a different model and are not comparable
        rows = self._load_candidates(source_type, int(query.size))
        if not rows:
            return []

        matrix = np.vstack([np.frombuffer(row[4], dtype=np.float32) for row in rows])
        distances = cosine_distances(matrix, query)

        return [
            QueryResult(embedding=row_to_embedding(rows[i]), distance=float(distances[i]))
            for i in rank_within_threshold(distances, max_distance, top_k)
        ]

    def get_embedding(self, embedding_id: str) -> Optional[EmbeddingRecord]:
        try:
            with get_db() as conn:
                cursor = conn.cursor()
                cursor.execute(f"SELECT {EMBEDDING_COLUMNS} FROM embeddings WHERE id = ?", (embedding_id,))
                row = cursor.fetchone()
                return row_to_embedding(row) if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to get embedding '{embedding_id}': {e}") from e

    def count(self, source_type: str = None) -> int:
        try:
            with get_db() as conn:
                cursor = conn.cursor()
                if source_type:
                    cursor.execute("SELECT COUNT(*) FROM embeddings WHERE source_type = ?", (source_type,))
                else:
                    cursor.execute("SELECT COUNT(*) FROM embeddings")
                result = cursor.fetchone()
                return result[0] if result else 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count embeddings: {e}") from e

    def cleanup_orphans(self) -> int:
        try:
            with get_transaction() as conn:
                cursor = conn.execute('''
                    DELETE FROM embeddings
                    WHERE id NOT IN (SELECT embedding_id FROM messages WHERE embedding_id IS NOT NULL)
                ''')
                removed = cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clean up orphaned embeddings: {e}") from e

        if removed:
            logger.log_operation("embeddings.cleanup_orphans", "success", {"removed": removed})
        return removed
