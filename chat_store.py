"""chat_store.py – abstraction layer for persisting chats and their messages.

Two implementations:
1. InMemoryChatStore – default for local/dev and unit-tests.
2. HttpChatStore – REST endpoints of the chat storage service.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import requests

from errors import PersistenceFailure
from models import Chat, StoredMessage

logger = logging.getLogger(__name__)


class BaseChatStore:
    """Interface other components depend on."""

    def get_chat(self, chat_id: str) -> Optional[Chat]:  # pragma: no cover
        raise NotImplementedError

    def create_chat(self, chat_id: str, title: str, user_id: Optional[str] = None) -> Chat:  # pragma: no cover
        raise NotImplementedError

    def append_messages(self, chat_id: str, messages: List[StoredMessage]) -> None:  # pragma: no cover
        raise NotImplementedError


class InMemoryChatStore(BaseChatStore):
    """Simple dict-based store for dev / unit-tests."""

    def __init__(self) -> None:
        self.chats: Dict[str, Chat] = {}
        self.messages: Dict[str, List[StoredMessage]] = {}

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        return self.chats.get(chat_id)

    def create_chat(self, chat_id: str, title: str, user_id: Optional[str] = None) -> Chat:
        chat = Chat(id=chat_id, title=title, user_id=user_id)
        self.chats[chat_id] = chat
        self.messages.setdefault(chat_id, [])
        return chat

    def append_messages(self, chat_id: str, messages: List[StoredMessage]) -> None:
        self.messages.setdefault(chat_id, []).extend(messages)


class HttpChatStore(BaseChatStore):
    """Persists chats via the storage service's REST API."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 5.0):
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._timeout = timeout

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        resp = requests.get(f"{self._base_url}/chats/{chat_id}", headers=self._headers, timeout=self._timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return Chat(**resp.json())

    def create_chat(self, chat_id: str, title: str, user_id: Optional[str] = None) -> Chat:
        chat = Chat(id=chat_id, title=title, user_id=user_id)
        resp = requests.post(
            f"{self._base_url}/chats",
            json=chat.model_dump(mode="json"),
            headers=self._headers,
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return chat

    def append_messages(self, chat_id: str, messages: List[StoredMessage]) -> None:
        try:
            resp = requests.post(
                f"{self._base_url}/chats/{chat_id}/messages",
                json={"messages": [m.model_dump(mode="json") for m in messages]},
                headers=self._headers,
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise PersistenceFailure(f"Chat storage rejected {len(messages)} messages: {e}") from e
        logger.debug("Stored %d messages for chat %s", len(messages), chat_id)
