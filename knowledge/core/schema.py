"""
Message log records and input validation.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


def text_has_content(text: Optional[str]) -> bool:
    """True unless text is None or only whitespace as str.strip() sees it."""
    return bool(text and text.strip())


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclass
class Message:
    """A single chat message in the append-only log."""

    id: str
    conversation_id: str
    role: str
    author_name: Optional[str]
    content: str
    sequence_number: int
    created_at: datetime
    embedding_id: Optional[str] = None

    @property
    def is_embedded(self) -> bool:
        return self.embedding_id is not None

    @property
    def has_content(self) -> bool:
        return text_has_content(self.content)


class NewMessage(BaseModel):
    """Validated input for appending a message. Sequence numbers are never accepted from callers."""

    conversation_id: str
    role: MessageRole
    content: Optional[str] = ""
    author_name: Optional[str] = None
    message_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator('conversation_id')
    @classmethod
    def conversation_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('conversation_id cannot be empty')
        return v.strip()

    @field_validator('author_name')
    @classmethod
    def author_name_length(cls, v):
        if v is not None and len(v) > 255:
            raise ValueError('author_name cannot exceed 255 characters')
        return v

    @field_validator('message_id')
    @classmethod
    def message_id_must_not_be_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError('message_id cannot be blank')
        return v


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Serialize a timestamp as fixed-width UTC ISO text so string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)
