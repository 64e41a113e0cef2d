"""
Tests for the background embedding pipeline.
"""

import time
from unittest.mock import MagicMock, patch

import pytest

from knowledge.core import dao
from knowledge.core.errors import GenerationError, StorageError
from knowledge.core.pipeline import CycleReport, EmbeddingPipeline
from knowledge.vector.embeddings import DeterministicHashEmbedding
from knowledge.vector.index import SqliteVectorStore


class RecordingProvider(DeterministicHashEmbedding):
    """Hash embeddings that remember call order and can fail on chosen texts."""

    def __init__(self, fail_on=(), on_call=None):
        super().__init__()
        self.calls = []
        self.fail_on = set(fail_on)
        self.on_call = on_call

    def embed_text(self, text):
        self.calls.append(text)
        if self.on_call:
            self.on_call(text)
        if text in self.fail_on:
            raise GenerationError("upstream unavailable", provider=self.name)
        return super().embed_text(text)


@pytest.fixture
def store():
    return SqliteVectorStore()


def make_pipeline(provider, store, **kwargs):
    settings = {"batch_size": 10, "cycle_delay": 0.01, "startup_delay": 0}
    settings.update(kwargs)
    return EmbeddingPipeline(embedding_provider=provider, vector_store=store, **settings)


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return False


def test_cycle_embeds_and_links_pending_messages(store):
    messages = [dao.append_message("conv-1", "user", text) for text in ("coffee", "espresso", "pasta")]
    pipeline = make_pipeline(RecordingProvider(), store)

    report = pipeline.run_cycle()

    assert (report.fetched, report.embedded, report.failed) == (3, 3, 0)
    for message in messages:
        stored = dao.get_message(message.id)
        embedding = store.get_embedding(stored.embedding_id)
        assert embedding.source_type == "Message"
        assert embedding.source_id == message.id
        assert embedding.content == message.content
        assert embedding.dimension == 384
    assert dao.count_pending() == 0


def test_blank_messages_never_reach_the_generator(store):
    dao.append_message("conv-1", "user", "   ")
    dao.append_message("conv-1", "tool", "")
    provider = RecordingProvider()

    report = make_pipeline(provider, store).run_cycle()

    assert report.fetched == 0
    assert provider.calls == []
    assert store.count() == 0


def test_messages_embedded_in_sequence_order(store):
    texts = ["dinner", "recipe", "pasta", "coffee", "espresso"]
    for i, text in enumerate(texts):
        dao.append_message(f"conv-{i % 2}", "user", text)
    provider = RecordingProvider()
    pipeline = make_pipeline(provider, store, batch_size=2)

    first = pipeline.run_cycle()
    assert first.embedded == 2
    assert provider.calls == texts[:2]

    pipeline.run_cycle()
    pipeline.run_cycle()
    assert provider.calls == texts


def test_failed_message_is_isolated_and_retried(store):
    good_before = dao.append_message("conv-1", "user", "coffee")
    bad = dao.append_message("conv-1", "user", "kubernetes cluster")
    good_after = dao.append_message("conv-1", "user", "espresso")
    provider = RecordingProvider(fail_on={"kubernetes cluster"})
    pipeline = make_pipeline(provider, store)

    report = pipeline.run_cycle()

    assert (report.embedded, report.failed) == (2, 1)
    assert report.failed_ids == [bad.id]
    assert dao.get_message(good_before.id).is_embedded
    assert dao.get_message(good_after.id).is_embedded
    assert [m.id for m in dao.list_pending(10)] == [bad.id]

    provider.fail_on.clear()
    retry = pipeline.run_cycle()

    assert (retry.fetched, retry.embedded) == (1, 1)
    assert dao.get_message(bad.id).is_embedded
    assert pipeline.total_embedded == 3
    assert pipeline.total_failed == 1


def test_second_cycle_does_not_re_embed(store):
    dao.append_message("conv-1", "user", "coffee")
    provider = RecordingProvider()
    pipeline = make_pipeline(provider, store)

    pipeline.run_cycle()
    report = pipeline.run_cycle()

    assert report.fetched == 0
    assert provider.calls == ["coffee"]
    assert store.count() == 1


def test_process_message_rejects_already_linked_message(store):
    message = dao.append_message("conv-1", "user", "coffee")
    pipeline = make_pipeline(RecordingProvider(), store)
    pipeline.run_cycle()

    with pytest.raises(StorageError):
        pipeline.process_message(message)
    assert store.count() == 1


def test_process_message_skips_blank_content(store):
    message = dao.append_message("conv-1", "user", "")
    provider = RecordingProvider()

    assert make_pipeline(provider, store).process_message(message) is None
    assert provider.calls == []


def test_fetch_failure_skips_cycle(store):
    dao.append_message("conv-1", "user", "coffee")
    provider = RecordingProvider()
    pipeline = make_pipeline(provider, store)

    with patch("knowledge.core.pipeline.list_pending", side_effect=StorageError("database is locked")):
        report = pipeline.run_cycle()

    assert report.fetched == 0
    assert report.fetch_error == "database is locked"
    assert provider.calls == []

    assert pipeline.run_cycle().embedded == 1


def test_storage_failure_on_link_leaves_message_pending(store):
    message = dao.append_message("conv-1", "user", "coffee")
    failing_store = MagicMock(wraps=store)
    failing_store.create_embedding_and_link.side_effect = StorageError("disk full")
    pipeline = make_pipeline(RecordingProvider(), failing_store)

    report = pipeline.run_cycle()

    assert report.failed_ids == [message.id]
    assert [m.id for m in dao.list_pending(10)] == [message.id]


def test_stop_between_messages_finishes_current_one(store):
    for text in ("coffee", "espresso", "pasta"):
        dao.append_message("conv-1", "user", text)
    pipeline = None

    def stop_after_first(text):
        pipeline.stop()

    provider = RecordingProvider(on_call=stop_after_first)
    pipeline = make_pipeline(provider, store)

    report = pipeline.run_cycle()

    assert report.cancelled
    assert report.embedded == 1
    assert provider.calls == ["coffee"]
    assert dao.count_pending() == 2


def test_background_thread_embeds_and_stops_promptly(store):
    dao.append_message("conv-1", "user", "coffee")
    dao.append_message("conv-1", "assistant", "espresso")
    pipeline = make_pipeline(RecordingProvider(), store, cycle_delay=60)

    pipeline.start()
    try:
        assert wait_for(lambda: dao.count_pending() == 0)
        assert pipeline.is_running
    finally:
        started = time.monotonic()
        assert pipeline.stop(timeout=5)
        assert time.monotonic() - started < 2

    assert not pipeline.is_running
    assert pipeline.get_status()["status"] == "stopped"


def test_stop_during_warm_up(store):
    dao.append_message("conv-1", "user", "coffee")
    provider = RecordingProvider()
    pipeline = make_pipeline(provider, store, startup_delay=60)

    pipeline.start()
    assert pipeline.stop(timeout=5)

    assert provider.calls == []
    assert pipeline.cycles == 0


def test_start_twice_rejected(store):
    pipeline = make_pipeline(RecordingProvider(), store, startup_delay=60)
    pipeline.start()
    try:
        with pytest.raises(RuntimeError, match="already running"):
            pipeline.start()
    finally:
        pipeline.stop(timeout=5)


def test_run_returns_immediately_when_already_stopped(store):
    pipeline = make_pipeline(RecordingProvider(), store, startup_delay=60)
    pipeline.stop()

    pipeline.run()

    assert pipeline.cycles == 0
    assert not pipeline.is_running


def test_custom_source_type(store):
    message = dao.append_message("conv-1", "user", "coffee")
    pipeline = make_pipeline(RecordingProvider(), store, source_type="ChatMessage")

    pipeline.run_cycle()

    embedding = store.get_embedding(dao.get_message(message.id).embedding_id)
    assert embedding.source_type == "ChatMessage"


@pytest.mark.parametrize("settings, error", [
    ({"batch_size": 0}, "batch_size"),
    ({"cycle_delay": -1}, "cycle_delay"),
    ({"startup_delay": -0.5}, "startup_delay"),
    ({"source_type": "  "}, "source_type"),
])
def test_invalid_settings_rejected(store, settings, error):
    with pytest.raises(ValueError, match=error):
        make_pipeline(RecordingProvider(), store, **settings)


def test_settings_default_to_configuration(store, monkeypatch):
    monkeypatch.setenv("PIPELINE_BATCH_SIZE", "25")
    monkeypatch.setenv("PIPELINE_CYCLE_DELAY_SEC", "2.5")

    pipeline = EmbeddingPipeline(embedding_provider=RecordingProvider(), vector_store=store)

    assert pipeline.batch_size == 25
    assert pipeline.cycle_delay == 2.5
    assert pipeline.startup_delay == 5.0
    assert pipeline.source_type == "Message"


def test_status_reports_progress(store):
    dao.append_message("conv-1", "user", "coffee")
    dao.append_message("conv-1", "user", "kubernetes")
    pipeline = make_pipeline(RecordingProvider(fail_on={"kubernetes"}), store)

    pipeline.run_cycle()
    status = pipeline.get_status()

    assert status["status"] == "stopped"
    assert status["cycles"] == 1
    assert status["total_embedded"] == 1
    assert status["total_failed"] == 1
    assert status["pending"] == 1
    assert status["last_cycle"]["failed"] == 1


def test_cycle_report_duration():
    report = CycleReport(cycle=1, started_at=10.0, finished_at=10.5)

    assert report.duration_sec == pytest.approx(0.5)
    assert report.to_dict()["duration_sec"] == 0.5
    assert CycleReport(cycle=2, started_at=1.0).duration_sec == 0.0


def test_backlog_of_25_drained_in_three_cycles(store):
    appended = [dao.append_message("conv-1", "user", f"message number {i}") for i in range(25)]
    pipeline = make_pipeline(RecordingProvider(), store, batch_size=10)

    reports = [pipeline.run_cycle() for _ in range(3)]

    assert [r.embedded for r in reports] == [10, 10, 5]
    linked = [dao.get_message(m.id).embedding_id for m in appended]
    assert None not in linked
    assert len(set(linked)) == 25
    assert store.count() == 25


def test_one_failure_in_full_batch_is_retried_alone(store):
    appended = [dao.append_message("conv-1", "user", f"message number {i}") for i in range(10)]
    provider = RecordingProvider(fail_on={"message number 6"})
    pipeline = make_pipeline(provider, store, batch_size=10)

    pipeline.run_cycle()

    assert [m.id for m in dao.list_pending(10)] == [appended[6].id]
    assert sum(dao.get_message(m.id).is_embedded for m in appended) == 9

    provider.fail_on.clear()
    provider.calls.clear()
    retry = pipeline.run_cycle()

    assert provider.calls == ["message number 6"]
    assert retry.embedded == 1
    assert dao.count_pending() == 0


def test_unicode_whitespace_backlog_does_not_block_later_messages(store):
    blanks = ["\x1c", "\x1d", "\x1e", "\x1f", "\x85", "\xa0", "\u2003", "\u3000", "\x1c\x85", "\u3000 \xa0"]
    for content in blanks:
        dao.append_message("conv-1", "user", content)
    real = dao.append_message("conv-1", "assistant", "The sky is blue")
    provider = RecordingProvider()

    report = make_pipeline(provider, store, batch_size=10).run_cycle()

    assert report.fetched == 1
    assert report.embedded == 1
    assert provider.calls == ["The sky is blue"]
    assert dao.get_message(real.id).is_embedded
    assert dao.count_pending() == 0


def test_deleted_id_reusable_after_orphan_cleanup(store):
    dao.append_message("conv-1", "user", "coffee", message_id="msg-1")
    pipeline = make_pipeline(RecordingProvider(), store)
    pipeline.run_cycle()
    dao.delete_message("msg-1")

    with pytest.raises(StorageError):
        dao.append_message("conv-1", "user", "espresso", message_id="msg-1")

    assert store.cleanup_orphans() == 1
    dao.append_message("conv-1", "user", "espresso", message_id="msg-1")
    report = pipeline.run_cycle()

    assert (report.embedded, report.failed) == (1, 0)
    linked = dao.get_message("msg-1")
    assert store.get_embedding(linked.embedding_id).content == "espresso"
