"""
Embedding generators and vector stores over the message database.
"""

# Package initialization for vector module
from .index import IVectorStore, SqliteVectorStore
from .faiss_store import FaissVectorStore
from .types import EmbeddingRecord, QueryResult
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding, OllamaEmbedding

__all__ = [
    'IVectorStore',
    'SqliteVectorStore',
    'FaissVectorStore',
    'EmbeddingRecord',
    'QueryResult',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'OllamaEmbedding'
]
