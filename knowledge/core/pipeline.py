"""
Background embedding pipeline.

Polls the message log for unembedded messages and turns each into an embedding
exactly once, in ascending sequence order, linking the result back to the message.
One thread, one generator call in flight, cooperative shutdown between messages.
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from .config import (
    get_embedding_provider, get_pipeline_batch_size, get_pipeline_cycle_delay,
    get_pipeline_startup_delay, get_source_type, get_vector_store
)
from .dao import count_pending, list_pending
from .errors import CancellationRequested, StorageError
from .schema import Message
from ..util.logging import logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore
from ..vector.types import EmbeddingRecord


@dataclass
class CycleReport:
    """Outcome of one pass over the pending messages."""

    cycle: int
    started_at: float
    finished_at: Optional[float] = None
    fetched: int = 0
    embedded: int = 0
    failed: int = 0
    skipped: int = 0
    failed_ids: List[str] = field(default_factory=list)
    fetch_error: Optional[str] = None
    cancelled: bool = False

    @property
    def duration_sec(self) -> float:
        if self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at

    def to_dict(self):
        data = asdict(self)
        data["duration_sec"] = round(self.duration_sec, 3)
        return data


class EmbeddingPipeline:
    """
    Embeds pending messages in batches, forever, until stopped.

    Unset settings are read from configuration. A message whose embedding fails
    stays pending and is retried on the next cycle, with no retry limit.
    """

    def __init__(self, embedding_provider: IEmbeddingProvider = None, vector_store: IVectorStore = None,
                 batch_size: int = None, cycle_delay: float = None, startup_delay: float = None,
                 source_type: str = None):
        self.batch_size = batch_size if batch_size is not None else get_pipeline_batch_size()
        self.cycle_delay = cycle_delay if cycle_delay is not None else get_pipeline_cycle_delay()
        self.startup_delay = startup_delay if startup_delay is not None else get_pipeline_startup_delay()
        self.source_type = source_type if source_type is not None else get_source_type()

        issues = self._check_settings()
        if issues:
            raise ValueError(f"Embedding pipeline configuration invalid: {issues}")

        self.embedding_provider = embedding_provider or get_embedding_provider()
        self.vector_store = vector_store or get_vector_store()

        self.cycles = 0
        self.total_embedded = 0
        self.total_failed = 0
        self.last_report: Optional[CycleReport] = None

        self._shutdown_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def _check_settings(self) -> List[str]:
        issues = []
        if self.batch_size < 1:
            issues.append(f"batch_size must be >= 1: {self.batch_size}")
        if self.cycle_delay < 0:
            issues.append(f"cycle_delay must be >= 0: {self.cycle_delay}")
        if self.startup_delay < 0:
            issues.append(f"startup_delay must be >= 0: {self.startup_delay}")
        if not self.source_type or not self.source_type.strip():
            issues.append("source_type cannot be empty")
        return issues

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stop_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def _wait(self, seconds: float):
        """Sleep for up to `seconds`; raise CancellationRequested as soon as stop is requested."""
        if self._shutdown_event.wait(seconds):
            raise CancellationRequested()

    def run(self):
        """
        Blocking loop: warm-up delay, then cycles separated by cycle_delay.

        Returns once stop() is called. If stop() was already called, returns immediately.
        """
        self._running = True
        logger.log_operation("pipeline.start", "running", {
            "batch_size": self.batch_size,
            "cycle_delay_sec": self.cycle_delay,
            "startup_delay_sec": self.startup_delay,
            "source_type": self.source_type,
            "provider": getattr(self.embedding_provider, "name", type(self.embedding_provider).__name__)
        })

        try:
            self._wait(self.startup_delay)
            while True:
                self.run_cycle()
                self._wait(self.cycle_delay)
        except CancellationRequested:
            pass
        finally:
            self._running = False
            logger.log_operation("pipeline.stop", "stopped", {
                "cycles": self.cycles,
                "total_embedded": self.total_embedded,
                "total_failed": self.total_failed
            })

    def start(self):
        """Run the loop on a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Embedding pipeline already running")

        self._shutdown_event.clear()
        self._thread = threading.Thread(target=self.run, name="embedding-pipeline", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = None) -> bool:
        """
        Request shutdown and wait for the background thread.

        The message being processed, if any, completes first. Returns False if the
        thread is still alive after `timeout` seconds.
        """
        self._shutdown_event.set()

        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True

        thread.join(timeout)
        return not thread.is_alive()

    def run_cycle(self) -> CycleReport:
        """Fetch one batch of pending messages and embed them in sequence order."""
        with self._cycle_lock:
            self.cycles += 1
            report = CycleReport(cycle=self.cycles, started_at=time.monotonic())

            try:
                pending = list_pending(self.batch_size)
            except StorageError as e:
                # Nothing fetched, nothing to undo; the next cycle tries again
                logger.error(f"Embedding pipeline cycle {report.cycle} skipped, fetch failed: {e}")
                report.fetch_error = str(e)
                pending = []

            report.fetched = len(pending)

            for message in pending:
                if self._shutdown_event.is_set():
                    report.cancelled = True
                    break

                try:
                    record = self.process_message(message)
                except Exception as e:
                    report.failed += 1
                    report.failed_ids.append(message.id)
                    logger.log_embedding_operation("process", message.id, {
                        "sequence_number": message.sequence_number,
                        "error_type": type(e).__name__,
                        "error": str(e)
                    }, status="failed")
                    continue

                if record is None:
                    report.skipped += 1
                else:
                    report.embedded += 1

            report.finished_at = time.monotonic()
            self.total_embedded += report.embedded
            self.total_failed += report.failed
            self.last_report = report

        logger.log_pipeline_cycle(report.cycle, report.started_at, report.finished_at,
                                  report.fetched, report.embedded, report.failed)
        return report

    def process_message(self, message: Message) -> Optional[EmbeddingRecord]:
        """
        Embed one message and link the embedding to it.

        Returns None when the message has no content to embed.

        Raises:
            GenerationError: the embedding backend rejected or failed the text
            StorageError: the embedding could not be stored or the message was already linked
        """
        if not message.has_content:
            logger.log_embedding_operation("process", message.id, {"reason": "blank content"}, status="skipped")
            return None

        vector = self.embedding_provider.embed_text(message.content)
        record = EmbeddingRecord.for_source(self.source_type, message.id, message.content, vector)
        return self.vector_store.create_embedding_and_link(record, message.id)

    def get_status(self):
        """Return current pipeline status for monitoring."""
        try:
            pending = count_pending()
        except StorageError as e:
            logger.warning(f"Could not count pending messages: {e}")
            pending = None

        return {
            "status": "running" if self._running else "stopped",
            "stop_requested": self.stop_requested,
            "batch_size": self.batch_size,
            "cycle_delay_sec": self.cycle_delay,
            "source_type": self.source_type,
            "cycles": self.cycles,
            "total_embedded": self.total_embedded,
            "total_failed": self.total_failed,
            "pending": pending,
            "last_cycle": self.last_report.to_dict() if self.last_report else None
        }
