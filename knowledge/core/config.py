"""
Configuration for the conversation knowledge store.
Environment driven; values are read at call time so tests and scripts can override them.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Version string
VERSION = "1.0.0"

DEFAULT_DB_PATH = "./data/knowledge.db"
MESSAGE_SOURCE_TYPE = "Message"

VALID_EMBED_PROVIDERS = ["hash", "sentence_transformers", "ollama"]
VALID_VECTOR_PROVIDERS = ["sqlite", "faiss"]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def get_db_path() -> str:
    """Get the SQLite database path."""
    return os.getenv("DB_PATH", DEFAULT_DB_PATH)


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def debug_enabled():
    """Check if debug mode is enabled."""
    return _env_bool("DEBUG", "false")


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


# Embedding generator configuration
def get_embed_provider_name() -> str:
    return os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence_transformers|ollama


def get_embed_model_name() -> str:
    return os.getenv("EMBED_MODEL_NAME", "all-mpnet-base-v2")


def get_embed_dimension() -> int:
    return _env_int("EMBED_DIM", 384)


def get_ollama_host():
    return os.getenv("OLLAMA_HOST") or None


# Vector store configuration
def get_vector_provider_name() -> str:
    return os.getenv("VECTOR_PROVIDER", "sqlite")  # sqlite|faiss


# Embedding pipeline configuration
def get_pipeline_batch_size() -> int:
    return _env_int("PIPELINE_BATCH_SIZE", 10)


def get_pipeline_cycle_delay() -> float:
    return _env_float("PIPELINE_CYCLE_DELAY_SEC", 10.0)


def get_pipeline_startup_delay() -> float:
    return _env_float("PIPELINE_STARTUP_DELAY_SEC", 5.0)


def get_source_type() -> str:
    return os.getenv("PIPELINE_SOURCE_TYPE", MESSAGE_SOURCE_TYPE)


# Similarity search configuration
def get_search_top_k() -> int:
    return _env_int("SEARCH_TOP_K", 10)


def get_search_min_score() -> float:
    return _env_float("SEARCH_MIN_SCORE", 0.40)


def is_maintenance_enabled() -> bool:
    return _env_bool("MAINTENANCE_ENABLED", "true")


def get_vector_store():
    """Get the configured vector store implementation."""
    provider = get_vector_provider_name()

    if provider == "faiss":
        from knowledge.vector.faiss_store import FaissVectorStore
        return FaissVectorStore()

    from knowledge.vector.index import SqliteVectorStore
    return SqliteVectorStore()


def get_embedding_provider():
    """Get the configured embedding provider implementation."""
    provider = get_embed_provider_name()

    if provider == "sentence_transformers":
        from knowledge.vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(get_embed_model_name())
    elif provider == "ollama":
        from knowledge.vector.embeddings import OllamaEmbedding
        dimension = int(os.getenv("EMBED_DIM")) if os.getenv("EMBED_DIM") else None
        model_name = os.getenv("EMBED_MODEL_NAME", "nomic-embed-text")
        return OllamaEmbedding(model_name, host=get_ollama_host(), dimension=dimension)
    else:
        from knowledge.vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(dimension=get_embed_dimension())


def validate_pipeline_config():
    """Validate embedding pipeline configuration and return any issues."""
    issues = []

    if get_pipeline_batch_size() < 1:
        issues.append("PIPELINE_BATCH_SIZE must be >= 1")

    if get_pipeline_cycle_delay() < 0:
        issues.append("PIPELINE_CYCLE_DELAY_SEC must be >= 0")

    if get_pipeline_startup_delay() < 0:
        issues.append("PIPELINE_STARTUP_DELAY_SEC must be >= 0")

    if not get_source_type().strip():
        issues.append("PIPELINE_SOURCE_TYPE cannot be empty")

    if get_embed_provider_name() not in VALID_EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {get_embed_provider_name()}")

    if get_vector_provider_name() not in VALID_VECTOR_PROVIDERS:
        issues.append(f"Invalid VECTOR_PROVIDER: {get_vector_provider_name()}")

    return issues


def validate_search_config():
    """Validate similarity search configuration and return any issues."""
    issues = []

    if get_search_top_k() < 1:
        issues.append("SEARCH_TOP_K must be >= 1")

    min_score = get_search_min_score()
    if not 0.0 <= min_score <= 1.0:
        issues.append(f"SEARCH_MIN_SCORE must be within [0, 1]: {min_score}")

    return issues
