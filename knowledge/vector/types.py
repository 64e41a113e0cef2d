"""
Embedding records and nearest-neighbour results.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

import numpy as np

from ..core.schema import utc_now


@dataclass
class EmbeddingRecord:
    """Persisted vector representation of a source entity's text."""

    source_type: str
    """Discriminator for the embedded entity, e.g. "Message" """

    source_id: str
    """Identifier of the embedded entity"""

    content: str
    """Verbatim text that was embedded"""

    vector: np.ndarray
    """Fixed-length float32 vector"""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    @classmethod
    def for_source(cls, source_type: str, source_id: str, content: str, vector: Sequence[float]) -> "EmbeddingRecord":
        return cls(
            source_type=source_type,
            source_id=source_id,
            content=content,
            vector=np.asarray(vector, dtype=np.float32),
        )


@dataclass
class QueryResult:
    """A nearest-neighbour hit from the vector store."""

    embedding: EmbeddingRecord
    distance: float
    """Cosine distance to the query (0 = identical direction)"""

    @property
    def score(self) -> float:
        """Cosine similarity of the match."""
        return 1.0 - self.distance
