import pytest

from knowledge.core.db import init_db

CONFIG_VARIABLES = [
    "EMBED_PROVIDER", "EMBED_MODEL_NAME", "EMBED_DIM", "OLLAMA_HOST", "VECTOR_PROVIDER",
    "PIPELINE_BATCH_SIZE", "PIPELINE_CYCLE_DELAY_SEC", "PIPELINE_STARTUP_DELAY_SEC",
    "PIPELINE_SOURCE_TYPE", "SEARCH_TOP_K", "SEARCH_MIN_SCORE", "MAINTENANCE_ENABLED",
]


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Give every test its own initialized database and default configuration."""
    db_path = tmp_path / "knowledge.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    for name in CONFIG_VARIABLES:
        monkeypatch.delenv(name, raising=False)

    init_db()
    return str(db_path)
