"""
Similarity search over embedded messages.
Query text in; threshold-filtered past messages out, in chronological order.
"""

from datetime import datetime
from typing import List, NamedTuple, Optional

from pydantic import BaseModel, Field

from .config import (
    get_embedding_provider, get_search_min_score, get_search_top_k, get_source_type,
    get_vector_store
)
from .dao import get_messages
from ..util.logging import logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore

NO_RESULTS_MESSAGE = "No relevant past conversations found for that query."
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"


class SearchOptions(BaseModel):
    """Search tuning. A match needs cosine similarity >= min_score."""

    top_k: int = Field(default=10, ge=1)
    min_score: float = Field(default=0.40, ge=0.0, le=1.0)
    source_type: str = Field(default="Message", min_length=1)

    @property
    def max_distance(self) -> float:
        return 1.0 - self.min_score

    @classmethod
    def from_config(cls) -> "SearchOptions":
        return cls(top_k=get_search_top_k(), min_score=get_search_min_score(), source_type=get_source_type())


class SearchEntry(NamedTuple):
    timestamp: datetime
    role: str
    content: str


class SearchResult:
    """Chronologically ordered matches for one query. Empty means no results."""

    def __init__(self, query: str, entries: List[SearchEntry] = None):
        self.query = query
        self.entries = entries or []

    @property
    def found(self) -> bool:
        return bool(self.entries)

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def to_text(self) -> str:
        """Render the matches as plain text for a conversational caller."""
        if not self.found:
            return NO_RESULTS_MESSAGE

        lines = [f"Found {len(self.entries)} relevant past messages:", ""]
        for entry in self.entries:
            lines.append(f"[{entry.timestamp.strftime(TIMESTAMP_FORMAT)}] {entry.role.capitalize()}:")
            lines.append(entry.content)
            lines.append("")
        return "\n".join(lines)


class SimilaritySearchService:
    """Embeds a query, finds the nearest stored messages and resolves them back to the log."""

    def __init__(self, embedding_provider: IEmbeddingProvider = None, vector_store: IVectorStore = None,
                 options: Optional[SearchOptions] = None):
        self.options = options or SearchOptions.from_config()
        self.embedding_provider = embedding_provider or get_embedding_provider()
        self.vector_store = vector_store or get_vector_store()

    def search(self, query: str) -> SearchResult:
        """
        Find past messages similar to the query.

        Raises:
            GenerationError: the query could not be embedded
            StorageError: the nearest-neighbour query failed
        """
        if query is None or not query.strip():
            return SearchResult(query or "")

        query_vector = self.embedding_provider.embed_text(query)

        hits = self.vector_store.query_nearest(
            self.options.source_type,
            query_vector,
            self.options.max_distance,
            self.options.top_k
        )

        # Messages deleted after they were embedded drop out here
        messages = get_messages(hit.embedding.source_id for hit in hits)
        messages.sort(key=lambda m: (m.created_at, m.sequence_number))

        entries = [
            SearchEntry(timestamp=m.created_at, role=m.role, content=m.content)
            for m in messages
        ]

        logger.log_search(query, len(hits), len(entries), self.options.min_score, self.options.top_k)
        return SearchResult(query, entries)


def search_conversation_history(query: str, top_k: int = None, min_score: float = None) -> str:
    """Search past conversations with the configured provider and store; return display text."""
    settings = SearchOptions.from_config().model_dump()
    if top_k is not None:
        settings["top_k"] = top_k
    if min_score is not None:
        settings["min_score"] = min_score
    options = SearchOptions.model_validate(settings)

    return SimilaritySearchService(options=options).search(query).to_text()
