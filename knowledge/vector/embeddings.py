"""
Embedding generators: text in, fixed-dimension float vector out.
All providers reject blank input and report backend failures as GenerationError.
"""

from abc import ABC, abstractmethod
import hashlib
import re
from typing import List, Optional, Sequence

import numpy as np
import ollama
from sentence_transformers import SentenceTransformer

from ..core.errors import GenerationError


def _require_text(text: str, provider: str) -> str:
    if text is None or not isinstance(text, str) or not text.strip():
        raise GenerationError("Text cannot be empty or whitespace.", provider=provider)
    return text


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    name = "base"

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Generate embedding vectors for several texts, in input order."""
        return [self.embed_text(text) for text in texts]

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hashed bag-of-words embedding provider.

    Each content word is hashed to a signed bucket and the counts are
    L2-normalised, so texts sharing words have positive cosine similarity.
    Works offline without model downloads; intended for tests and local runs.
    """

    name = "hash"

    TOKEN_PATTERN = re.compile(r"[a-z0-9]+")
    STOP_WORDS = frozenset({
        "a", "an", "and", "are", "as", "at", "be", "by", "did", "do", "does", "for",
        "from", "has", "have", "i", "in", "is", "it", "me", "my", "of", "on", "or",
        "so", "that", "the", "this", "to", "was", "we", "were", "what", "with", "you",
    })

    def __init__(self, dimension: int = 384):
        if dimension < 1:
            raise ValueError(f"Dimension must be >= 1: {dimension}")
        self.dimension = dimension

    def _tokenize(self, text: str) -> List[str]:
        words = self.TOKEN_PATTERN.findall(text.lower())
        content_words = [word for word in words if word not in self.STOP_WORDS]
        return content_words or words or [text.strip().lower()]

    def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector using hash function."""
        _require_text(text, self.name)

        vector = np.zeros(self.dimension, dtype=np.float64)
        for token in self._tokenize(text):
            hex_dig = hashlib.md5(token.encode("utf-8")).hexdigest()
            index = int(hex_dig[:8], 16) % self.dimension
            sign = 1.0 if int(hex_dig[8:10], 16) % 2 == 0 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Uses the all-mpnet-base-v2 model by default.
    """

    name = "sentence_transformers"

    def __init__(self, model_name: str = "all-mpnet-base-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            try:
                self._model = SentenceTransformer(self.model_name)
            except Exception as e:
                raise GenerationError(f"Failed to load model '{self.model_name}': {e}", provider=self.name) from e
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        _require_text(text, self.name)
        model = self.model
        try:
            embedding = model.encode(text, convert_to_tensor=False, show_progress_bar=False)
        except Exception as e:
            raise GenerationError(f"Embedding failed: {e}", provider=self.name) from e
        return [float(x) for x in embedding]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        if not texts:
            return []
        for text in texts:
            _require_text(text, self.name)

        model = self.model
        try:
            embeddings = model.encode(texts, convert_to_tensor=False, show_progress_bar=False)
        except Exception as e:
            raise GenerationError(f"Batch embedding failed: {e}", provider=self.name) from e
        return [[float(x) for x in embedding] for embedding in embeddings]

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
            if self._dimension is None:
                # Some models only report their size after encoding
                self._dimension = len(self.embed_text("test"))
        return self._dimension


class OllamaEmbedding(IEmbeddingProvider):
    """Embedding provider backed by a local Ollama server."""

    name = "ollama"

    def __init__(self, model_name: str = "nomic-embed-text", host: Optional[str] = None, dimension: Optional[int] = None):
        self.model_name = model_name
        self.host = host
        self._dimension = dimension
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = ollama.Client(host=self.host)
        return self._client

    def _embed(self, inputs: List[str]) -> List[List[float]]:
        try:
            response = self.client.embed(model=self.model_name, input=inputs)
        except ollama.ResponseError as e:
            raise GenerationError(f"Ollama model error: {e}", provider=self.name) from e
        except Exception as e:
            raise GenerationError(f"Ollama request failed: {e}", provider=self.name) from e

        embeddings = response["embeddings"]
        if len(embeddings) != len(inputs):
            raise GenerationError(
                f"Ollama returned {len(embeddings)} embeddings for {len(inputs)} inputs",
                provider=self.name
            )

        vectors = [[float(x) for x in embedding] for embedding in embeddings]
        for vector in vectors:
            if self._dimension is None:
                self._dimension = len(vector)
            elif len(vector) != self._dimension:
                raise GenerationError(
                    f"Embedding dimension {len(vector)} does not match expected dimension {self._dimension}",
                    provider=self.name
                )
        return vectors

    def embed_text(self, text: str) -> List[float]:
        _require_text(text, self.name)
        return self._embed([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        if not texts:
            return []
        for text in texts:
            _require_text(text, self.name)
        return self._embed(texts)

    def get_dimension(self) -> int:
        if self._dimension is None:
            # Probe once; the server decides the size
            self._embed(["dimension probe"])
        return self._dimension
