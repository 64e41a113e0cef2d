"""
Conversation knowledge store: append-only message log, background embedding
pipeline and similarity search over past messages.
"""

from .core.config import VERSION

__version__ = VERSION
