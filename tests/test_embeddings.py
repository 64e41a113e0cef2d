"""
Tests for embedding providers.
"""

import numpy as np
import ollama
import pytest
from unittest.mock import MagicMock, patch

from knowledge.core.errors import GenerationError
from knowledge.vector.embeddings import (
    DeterministicHashEmbedding, OllamaEmbedding, SentenceTransformerEmbedding
)


def cosine(a, b):
    a, b = np.asarray(a), np.asarray(b)
    return float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))


class TestDeterministicHashEmbedding:

    def test_deterministic_and_normalized(self):
        provider = DeterministicHashEmbedding()

        first = provider.embed_text("The sky is blue")
        second = provider.embed_text("The sky is blue")

        assert first == second
        assert len(first) == 384
        assert provider.get_dimension() == 384
        assert np.linalg.norm(first) == pytest.approx(1.0)

    def test_shared_words_score_higher_than_unrelated_text(self):
        provider = DeterministicHashEmbedding()
        sky = provider.embed_text("The sky is blue")

        assert cosine(sky, provider.embed_text("sky color")) == pytest.approx(0.5)
        assert cosine(sky, provider.embed_text("stock market trends")) == pytest.approx(0.0)

    def test_case_and_punctuation_ignored(self):
        provider = DeterministicHashEmbedding()

        assert provider.embed_text("Sky, BLUE!") == provider.embed_text("sky blue")

    def test_stop_word_only_text_still_embeds(self):
        vector = DeterministicHashEmbedding().embed_text("The")

        assert np.linalg.norm(vector) == pytest.approx(1.0)

    @pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
    def test_blank_text_rejected(self, text):
        with pytest.raises(GenerationError, match="empty or whitespace"):
            DeterministicHashEmbedding().embed_text(text)

    def test_batch_preserves_order(self):
        provider = DeterministicHashEmbedding(dimension=32)
        texts = ["coffee", "espresso", "pasta dinner"]

        assert provider.embed_batch(texts) == [provider.embed_text(t) for t in texts]
        assert provider.embed_batch([]) == []

    def test_invalid_dimension(self):
        with pytest.raises(ValueError):
            DeterministicHashEmbedding(dimension=0)


class TestSentenceTransformerEmbedding:

    @patch("knowledge.vector.embeddings.SentenceTransformer")
    def test_model_loaded_lazily(self, mock_model_cls):
        model = MagicMock()
        model.encode.return_value = np.array([0.1, 0.2, 0.3])
        model.get_sentence_embedding_dimension.return_value = 3
        mock_model_cls.return_value = model

        provider = SentenceTransformerEmbedding("test-model")
        mock_model_cls.assert_not_called()

        assert provider.embed_text("hello") == pytest.approx([0.1, 0.2, 0.3])
        assert provider.get_dimension() == 3
        mock_model_cls.assert_called_once_with("test-model")

    @patch("knowledge.vector.embeddings.SentenceTransformer")
    def test_batch_encodes_once(self, mock_model_cls):
        model = MagicMock()
        model.encode.return_value = np.array([[1.0, 0.0], [0.0, 1.0]])
        mock_model_cls.return_value = model

        vectors = SentenceTransformerEmbedding().embed_batch(["a", "b"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert model.encode.call_count == 1

    @patch("knowledge.vector.embeddings.SentenceTransformer")
    def test_load_failure_is_generation_error(self, mock_model_cls):
        mock_model_cls.side_effect = OSError("model not found")

        with pytest.raises(GenerationError, match="Failed to load model") as exc_info:
            SentenceTransformerEmbedding("missing-model").embed_text("hello")
        assert exc_info.value.provider == "sentence_transformers"

    @patch("knowledge.vector.embeddings.SentenceTransformer")
    def test_encode_failure_is_generation_error(self, mock_model_cls):
        model = MagicMock()
        model.encode.side_effect = RuntimeError("CUDA out of memory")
        mock_model_cls.return_value = model

        with pytest.raises(GenerationError, match="Embedding failed"):
            SentenceTransformerEmbedding().embed_text("hello")

    @patch("knowledge.vector.embeddings.SentenceTransformer")
    def test_blank_text_rejected_without_loading_model(self, mock_model_cls):
        with pytest.raises(GenerationError):
            SentenceTransformerEmbedding().embed_text("  ")
        mock_model_cls.assert_not_called()


class TestOllamaEmbedding:

    def _provider(self, response=None, side_effect=None, **kwargs):
        client = MagicMock()
        client.embed.return_value = response
        client.embed.side_effect = side_effect
        provider = OllamaEmbedding("nomic-embed-text", **kwargs)
        provider._client = client
        return provider, client

    def test_embed_text(self):
        provider, client = self._provider({"embeddings": [[0.1, 0.2]]})

        assert provider.embed_text("hi") == pytest.approx([0.1, 0.2])
        client.embed.assert_called_once_with(model="nomic-embed-text", input=["hi"])
        assert provider.get_dimension() == 2

    def test_batch(self):
        provider, client = self._provider({"embeddings": [[1.0, 0.0], [0.0, 1.0]]})

        assert provider.embed_batch(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]
        client.embed.assert_called_once_with(model="nomic-embed-text", input=["a", "b"])

    def test_response_error_is_generation_error(self):
        provider, _ = self._provider(side_effect=ollama.ResponseError("model not found"))

        with pytest.raises(GenerationError, match="Ollama model error") as exc_info:
            provider.embed_text("hi")
        assert exc_info.value.provider == "ollama"

    def test_connection_error_is_generation_error(self):
        provider, _ = self._provider(side_effect=ConnectionError("refused"))

        with pytest.raises(GenerationError, match="Ollama request failed"):
            provider.embed_text("hi")

    def test_dimension_mismatch(self):
        provider, _ = self._provider({"embeddings": [[0.1, 0.2]]}, dimension=3)

        with pytest.raises(GenerationError, match="does not match expected dimension"):
            provider.embed_text("hi")

    def test_result_count_mismatch(self):
        provider, _ = self._provider({"embeddings": [[0.1, 0.2]]})

        with pytest.raises(GenerationError, match="1 embeddings for 2 inputs"):
            provider.embed_batch(["a", "b"])

    @patch("knowledge.vector.embeddings.ollama.Client")
    def test_client_uses_configured_host(self, mock_client_cls):
        provider = OllamaEmbedding(host="http://gpu-box:11434")

        assert provider.client is mock_client_cls.return_value
        mock_client_cls.assert_called_once_with(host="http://gpu-box:11434")
