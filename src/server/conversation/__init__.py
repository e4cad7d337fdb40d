"""Conversation persistence and HTTP APIs backed by SQLite."""

from .router import get_chat_store
from .store import SQLiteChatStore

__all__ = ["SQLiteChatStore", "get_chat_store"]
