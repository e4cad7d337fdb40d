# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from typing import Optional, Protocol

from .models import (
    CalendarEvent,
    Conversation,
    Human,
    Message,
    Part,
    SessionFilter,
    SessionRecord,
)


class ChatStore(Protocol):
    """Persistence operations the chat pipeline consumes.

    Every call stands alone; none are transactional across calls.
    """

    async def create_conversation(
        self, *, session_id: str, user_id: str, name: Optional[str] = None
    ) -> Conversation: ...

    async def list_conversations(self, session_id: str) -> list[Conversation]: ...

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    async def rename_conversation(self, conversation_id: str, name: str) -> None: ...

    async def create_message(self, message: Message) -> Message: ...

    async def list_messages(self, conversation_id: str) -> list[Message]: ...

    async def update_message_parts(self, message_id: str, parts: list[Part]) -> None: ...

    async def get_session(self, session_id: str) -> Optional[SessionRecord]: ...

    async def session_list_participants(self, session_id: str) -> list[Human]: ...

    async def session_get_event(self, session_id: str) -> Optional[CalendarEvent]: ...

    async def get_human(self, human_id: str) -> Optional[Human]: ...

    async def list_sessions(self, session_filter: SessionFilter) -> list[SessionRecord]: ...
