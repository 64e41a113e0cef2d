"""
Structured logging for message log, embedding pipeline and search operations.
"""

import logging
from typing import Any, Dict, List

from ..core.config import get_log_level

DEFAULT_SENSITIVE_FIELDS = ['content', 'query', 'vector']


class StructuredLogger:
    """Structured logger for knowledge store operations."""

    def __init__(self, name: str = "knowledge"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, get_log_level(), logging.INFO))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_message_appended(self, message_id: str, conversation_id: str, sequence_number: int, role: str):
        """Log a message appended to the log."""
        self.log_operation("messages.append", "success", {
            "message_id": message_id,
            "conversation_id": conversation_id,
            "sequence_number": sequence_number,
            "role": role
        }, level=logging.DEBUG)

    def log_embedding_operation(self, operation: str, message_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log an embedding operation for a single message."""
        log_details = {"message_id": message_id}
        if details:
            log_details.update(sanitize_payload(details))

        level = logging.WARNING if status == "failed" else logging.DEBUG
        self.log_operation(f"embedding.{operation}", status, log_details, level=level)

    def log_pipeline_cycle(self, cycle: int, start_time: float, end_time: float, fetched: int, embedded: int, failed: int):
        """Log the outcome of one embedding pipeline cycle."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        status = "partial" if failed else "success"
        details = {
            "cycle": cycle,
            "fetched": fetched,
            "embedded": embedded,
            "failed": failed,
            "duration_ms": duration_ms
        }
        # Idle cycles are frequent; keep them out of INFO output
        level = logging.INFO if fetched else logging.DEBUG
        self.log_operation("pipeline.cycle", status, details, level=level)

    def log_search(self, query: str, candidates: int, results: int, min_score: float, top_k: int):
        """Log a similarity search."""
        details = sanitize_payload({
            "query": query,
            "candidates": candidates,
            "results": results,
            "min_score": min_score,
            "top_k": top_k
        }, reveal_sensitive=True)
        self.log_operation("search.similarity", "found" if results else "empty", details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str, exc_info: bool = False) -> None:
        """Log an error message."""
        self.logger.error(message, exc_info=exc_info)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Truncate long values and redact message text before it reaches the logs."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
