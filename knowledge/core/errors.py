"""
Error taxonomy for the embedding pipeline and similarity search.
"""


class KnowledgeError(Exception):
    """Base exception for all knowledge store errors."""
    pass


class GenerationError(KnowledgeError):
    """
    Embedding generation failed or was rejected.

    Raised when:
    - Input text is empty or whitespace
    - The embedding backend is unreachable or returns an error
    - The backend returns a malformed result
    """

    def __init__(self, message: str, provider: str = None):
        super().__init__(message)
        self.provider = provider


class StorageError(KnowledgeError):
    """
    Durable read or write failed.

    Raised when:
    - Sequence number assignment fails
    - An embedding/link transaction cannot commit
    - A message is missing or already linked to an embedding
    - A nearest-neighbour query fails
    """
    pass


class CancellationRequested(KnowledgeError):
    """Cooperative shutdown signal for the embedding pipeline. Not an error condition."""
    pass


class MaintenanceError(KnowledgeError):
    """Maintenance operation disabled or failed."""
    pass
