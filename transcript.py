"""transcript.py – sanitizes the messages produced during a turn and stores them.

A tool call recorded without its result (or a result without its call) is an
incomplete record; replaying it later would re-invoke a side-effecting tool,
so it never reaches storage.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import List

from chat_store import BaseChatStore
from errors import PersistenceFailure
from models import ChatMessage, MessageRole, StoredMessage

logger = logging.getLogger(__name__)


def sanitize_response_messages(messages: List[ChatMessage]) -> List[ChatMessage]:
    """Drop incomplete tool-call records. Idempotent; preserves order."""
    call_ids = {tc.id for m in messages if m.tool_calls for tc in m.tool_calls}
    result_ids = {m.tool_call_id for m in messages if m.role == MessageRole.TOOL and m.tool_call_id}
    complete = call_ids & result_ids

    sanitized: List[ChatMessage] = []
    for message in messages:
        if message.role == MessageRole.TOOL:
            if message.tool_call_id in complete:
                sanitized.append(message)
            continue
        if message.role == MessageRole.ASSISTANT:
            kept_calls = [tc for tc in (message.tool_calls or []) if tc.id in complete]
            if not message.content and not kept_calls:
                continue
            sanitized.append(message.model_copy(update={"tool_calls": kept_calls or None}))
            continue
        sanitized.append(message)
    return sanitized


class TranscriptPersistence:
    """Writes the sanitized transcript of a finished turn."""

    def __init__(self, store: BaseChatStore) -> None:
        self._store = store

    def to_stored(self, chat_id: str, messages: List[ChatMessage]) -> List[StoredMessage]:
        return [
            StoredMessage(
                id=str(uuid.uuid4()),
                chat_id=chat_id,
                role=m.role,
                content=m.content,
                tool_calls=m.tool_calls,
                tool_call_id=m.tool_call_id,
                name=m.name,
                created_at=datetime.now(),
            )
            for m in messages
        ]

    async def sanitize_and_store(self, chat_id: str, produced_messages: List[ChatMessage]) -> None:
        """Never raises: the caller already has the streamed answer."""
        sanitized = sanitize_response_messages(produced_messages)
        dropped = len(produced_messages) - len(sanitized)
        if dropped:
            logger.info("Dropped %d incomplete message(s) from chat %s transcript", dropped, chat_id)
        if not sanitized:
            return
        try:
            await asyncio.to_thread(self._store.append_messages, chat_id, self.to_stored(chat_id, sanitized))
        except PersistenceFailure as e:
            logger.error("Failed to save chat %s: %s", chat_id, e.message)
        except Exception:
            logger.exception("Failed to save chat %s", chat_id)
