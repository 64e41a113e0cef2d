"""
FAISS-accelerated nearest-neighbour search over the SQLite embedding store.
SQLite stays the store of record; FAISS indexes are rebuilt from it on demand.
"""

import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import faiss
import numpy as np

from .index import EMBEDDING_COLUMNS, SqliteVectorStore, as_query_vector, row_to_embedding
from .types import QueryResult
from ..core.db import get_db
from ..core.errors import StorageError


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalise rows for inner-product search; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)


@dataclass
class _IndexState:
    index: "faiss.IndexFlatIP"
    rowids: List[int] = field(default_factory=list)
    last_rowid: int = 0


class FaissVectorStore(SqliteVectorStore):
    """SqliteVectorStore whose queries run against in-memory FAISS flat indexes.

    One IndexFlatIP per (source_type, dimension). Embeddings are append-only, so each
    index catches up by reading rows with a rowid above the last one it has seen.
    """

    def __init__(self):
        self._indexes: Dict[Tuple[str, int], _IndexState] = {}
        self._lock = threading.Lock()

    def _sync(self, source_type: str, dimension: int) -> _IndexState:
        key = (source_type, dimension)
        state = self._indexes.get(key)
        if state is None:
            state = _IndexState(index=faiss.IndexFlatIP(dimension))
            self._indexes[key] = state

        try:
            with get_db() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT rowid, vector FROM embeddings WHERE source_type = ? AND dimension = ? AND rowid > ? ORDER BY rowid",
                    (source_type, dimension, state.last_rowid)
                )
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load embeddings into FAISS index: {e}") from e

        if rows:
            matrix = np.vstack([np.frombuffer(row[1], dtype=np.float32) for row in rows])
            state.index.add(np.ascontiguousarray(_normalize_rows(matrix), dtype=np.float32))
            state.rowids.extend(row[0] for row in rows)
            state.last_rowid = rows[-1][0]

        return state

    def _fetch_by_rowid(self, rowids: List[int]) -> Dict[int, tuple]:
        placeholders = ", ".join("?" for _ in rowids)
        try:
            with get_db() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"SELECT rowid, {EMBEDDING_COLUMNS} FROM embeddings WHERE rowid IN ({placeholders})",
                    rowids
                )
                return {row[0]: row[1:] for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load embedding records: {e}") from e

    @staticmethod
    def _search_with_ties(index, normalized_query: np.ndarray, top_k: int):
        """Search for top_k, widening k until every score tied with the k-th is included."""
        ntotal = index.ntotal
        k = min(top_k, ntotal)
        while True:
            scores, positions = index.search(normalized_query, k)
            if k == ntotal or scores[0][-1] < scores[0][top_k - 1]:
                return scores, positions
            k = min(k * 2, ntotal)

    def query_nearest(self, source_type: str, query_vector: Sequence[float], max_distance: float, top_k: int) -> List[QueryResult]:
        query = as_query_vector(query_vector)
        if top_k <= 0:
            return []

        with self._lock:
            state = self._sync(source_type, int(query.size))
            if state.index.ntotal == 0:
                return []

            normalized_query = _normalize_rows(query.reshape(1, -1))
            scores, positions = self._search_with_ties(state.index, normalized_query, top_k)

            hits = []
            for score, position in zip(scores[0], positions[0]):
                if position < 0:
                    continue
                distance = 1.0 - float(np.clip(score, -1.0, 1.0))
                if distance <= max_distance:
                    hits.append((state.rowids[position], distance))

        if not hits:
            return []

        # FAISS breaks score ties arbitrarily; restore insertion order among equals
        hits.sort(key=lambda hit: (hit[1], hit[0]))
        hits = hits[:top_k]
        rows = self._fetch_by_rowid([rowid for rowid, _ in hits])

        # Rows deleted since the index synced are dropped
        return [
            QueryResult(embedding=row_to_embedding(rows[rowid]), distance=distance)
            for rowid, distance in hits
            if rowid in rows
        ]

    def cleanup_orphans(self) -> int:
        removed = super().cleanup_orphans()
        if removed:
            with self._lock:
                self._indexes.clear()
        return removed

    def reset(self):
        """Drop all in-memory indexes; the next query rebuilds them from SQLite."""
        with self._lock:
            self._indexes.clear()
