"""
Append-only message log.

Every operation takes its conversation context explicitly. Sequence numbers come
from a single SequenceAllocator and are assigned in the same transaction as the
insert.
"""

import sqlite3
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from .db import get_db, get_transaction
from .errors import StorageError
from .schema import Message, NewMessage, from_db_timestamp, to_db_timestamp, utc_now
from .sequence import SequenceAllocator
from ..util.logging import logger

MESSAGE_SEQUENCE = "messages"

message_sequence = SequenceAllocator(MESSAGE_SEQUENCE)

_MESSAGE_COLUMNS = "id, conversation_id, role, author_name, content, sequence_number, created_at, embedding_id"


def _row_to_message(row) -> Message:
    message_id, conversation_id, role, author_name, content, sequence_number, created_at, embedding_id = row
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        role=role,
        author_name=author_name,
        content=content,
        sequence_number=sequence_number,
        created_at=from_db_timestamp(created_at),
        embedding_id=embedding_id
    )


def _insert_message(conn: sqlite3.Connection, request: NewMessage) -> Message:
    if request.message_id is not None:
        # Embeddings are unique per source id; a reused id could never be linked
        cursor = conn.execute("SELECT 1 FROM embeddings WHERE source_id = ? LIMIT 1", (request.message_id,))
        if cursor.fetchone() is not None:
            raise StorageError(
                f"Message id '{request.message_id}' is still referenced by an embedding; "
                "run cleanup_orphaned_embeddings before reusing it"
            )

    sequence_number = message_sequence.next_value(conn)
    created_at = to_db_timestamp(request.created_at or utc_now())
    message = Message(
        id=request.message_id or str(uuid.uuid4()),
        conversation_id=request.conversation_id,
        role=request.role.value,
        author_name=request.author_name,
        content=request.content or "",
        sequence_number=sequence_number,
        created_at=from_db_timestamp(created_at)
    )
    conn.execute(
        f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, NULL)",
        (message.id, message.conversation_id, message.role, message.author_name,
         message.content, message.sequence_number, created_at)
    )
    return message


def append_message(conversation_id: str, role: str, content: Optional[str], author_name: Optional[str] = None,
                   message_id: Optional[str] = None, created_at: Optional[datetime] = None) -> Message:
    """
    Append a message to the log and assign its global sequence number.

    Raises:
        pydantic.ValidationError: invalid role, conversation id or author name
        StorageError: the insert or sequence assignment could not be committed, or message_id
            is still the source of a stored embedding
    """
    request = NewMessage(
        conversation_id=conversation_id,
        role=role,
        content=content,
        author_name=author_name,
        message_id=message_id,
        created_at=created_at
    )

    try:
        with get_transaction(immediate=True) as conn:
            message = _insert_message(conn, request)
    except sqlite3.Error as e:
        logger.error(f"Failed to append message to conversation '{conversation_id}': {e}")
        raise StorageError(f"Failed to append message: {e}") from e

    logger.log_message_appended(message.id, message.conversation_id, message.sequence_number, message.role)
    return message


def append_messages(conversation_id: str, messages: Iterable[dict]) -> List[Message]:
    """
    Append several messages in one transaction. Sequence numbers follow input order.

    Each item is a dict with role, content and optionally author_name, message_id, created_at.
    """
    requests = [NewMessage(conversation_id=conversation_id, **item) for item in messages]
    if not requests:
        return []

    try:
        with get_transaction(immediate=True) as conn:
            appended = [_insert_message(conn, request) for request in requests]
    except sqlite3.Error as e:
        logger.error(f"Failed to append {len(requests)} messages to conversation '{conversation_id}': {e}")
        raise StorageError(f"Failed to append messages: {e}") from e

    for message in appended:
        logger.log_message_appended(message.id, message.conversation_id, message.sequence_number, message.role)
    return appended


def list_pending(limit: int) -> List[Message]:
    """
    Messages with no embedding and non-blank content, oldest sequence first.

    This is the only read path the embedding pipeline uses.
    """
    if limit <= 0:
        return []

    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f'''
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE embedding_id IS NULL
                  AND has_content(content)
                ORDER BY sequence_number ASC
                LIMIT ?
            ''', (limit,))
            return [_row_to_message(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        raise StorageError(f"Failed to list pending messages: {e}") from e


def list_by_conversation(conversation_id: str) -> List[Message]:
    """All messages of one conversation in sequence order."""
    if not conversation_id or not conversation_id.strip():
        return []

    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f'''
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE conversation_id = ?
                ORDER BY sequence_number ASC
            ''', (conversation_id.strip(),))
            return [_row_to_message(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        raise StorageError(f"Failed to list messages for conversation '{conversation_id}': {e}") from e


def get_message(message_id: str) -> Optional[Message]:
    """Get a message by id."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,))
            row = cursor.fetchone()
            return _row_to_message(row) if row else None
    except sqlite3.Error as e:
        raise StorageError(f"Failed to get message '{message_id}': {e}") from e


def get_messages(message_ids: Iterable[str]) -> List[Message]:
    """Get messages by id, in sequence order. Unknown ids are ignored."""
    ids = list(dict.fromkeys(message_ids))
    if not ids:
        return []

    placeholders = ", ".join("?" for _ in ids)
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id IN ({placeholders}) ORDER BY sequence_number ASC",
                ids
            )
            return [_row_to_message(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        raise StorageError(f"Failed to get messages: {e}") from e


def link_embedding(conn: sqlite3.Connection, message_id: str, embedding_id: str) -> None:
    """
    Set a message's embedding_id on the caller's open transaction.

    Only an unlinked message can be linked; the caller rolls back on StorageError.
    """
    try:
        cursor = conn.execute(
            "UPDATE messages SET embedding_id = ? WHERE id = ? AND embedding_id IS NULL",
            (embedding_id, message_id)
        )
    except sqlite3.Error as e:
        raise StorageError(f"Failed to link embedding '{embedding_id}' to message '{message_id}': {e}") from e

    if cursor.rowcount != 1:
        raise StorageError(f"Message '{message_id}' does not exist or is already linked to an embedding")


def delete_message(message_id: str) -> bool:
    """Delete a message. Its embedding record is kept."""
    try:
        with get_transaction() as conn:
            cursor = conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            deleted = cursor.rowcount > 0
    except sqlite3.Error as e:
        logger.error(f"Database error during delete_message for '{message_id}': {e}")
        raise StorageError(f"Failed to delete message '{message_id}': {e}") from e

    if deleted:
        logger.log_operation("messages.delete", "success", {"message_id": message_id})
    return deleted


def count_pending() -> int:
    """Count messages still waiting for an embedding."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COUNT(*) FROM messages WHERE embedding_id IS NULL AND has_content(content)"
            )
            result = cursor.fetchone()
            return result[0] if result else 0
    except sqlite3.Error as e:
        raise StorageError(f"Failed to count pending messages: {e}") from e


def count_messages(conversation_id: str = None) -> int:
    """Count messages for a conversation or across all conversations."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            if conversation_id and conversation_id.strip():
                cursor.execute("SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id.strip(),))
            else:
                cursor.execute("SELECT COUNT(*) FROM messages")
            result = cursor.fetchone()
            return result[0] if result else 0
    except sqlite3.Error as e:
        raise StorageError(f"Failed to count messages: {e}") from e
