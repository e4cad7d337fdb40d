# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Keep the conversation store and the in-memory chat state consistent."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional, Sequence

from src.utils.text_utils import is_blank

from .chunks import UIChunk
from .errors import GenerationError, PersistenceWriteError
from .models import Conversation, ConversationSummary, Mention, Message, Part, SelectionData, TextPart
from .store import ChatStore
from .transport import GenerationTransport

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _first_user_text(messages: Sequence[Message]) -> str:
    for message in messages:
        if message.role == "user":
            return message.text
    return ""


async def summarize_conversation(store: ChatStore, conversation: Conversation) -> ConversationSummary:
    messages = await store.list_messages(conversation.id)
    timestamps = [message.created_at for message in messages if message.created_at is not None]
    return ConversationSummary(
        conversation=conversation,
        first_message=_first_user_text(messages),
        most_recent_timestamp=max(timestamps) if timestamps else conversation.created_at,
    )


async def summarize_conversations(
    store: ChatStore, conversations: Sequence[Conversation]
) -> list[ConversationSummary]:
    """Augment conversations with their first user message and latest activity, most recent first."""
    summaries = list(await asyncio.gather(*(summarize_conversation(store, c) for c in conversations)))
    summaries.sort(key=lambda summary: summary.most_recent_timestamp, reverse=True)
    return summaries


class ConversationSync:
    """Chat state for one session: its conversations, the active one and its messages."""

    def __init__(
        self,
        store: ChatStore,
        transport: GenerationTransport,
        *,
        session_id: Optional[str],
        user_id: Optional[str],
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self._store = store
        self.transport = transport
        self.session_id = session_id
        self.user_id = user_id
        self._on_error = on_error
        self.conversations: list[ConversationSummary] = []
        self.active_conversation_id: Optional[str] = None
        self.messages: list[Message] = []
        self._abort_signal: Optional[asyncio.Event] = None
        self._create_lock = asyncio.Lock()

    @property
    def store(self) -> ChatStore:
        return self._store

    async def refresh_conversations(self) -> list[ConversationSummary]:
        """Reload the session's conversations and select the most recent one."""
        if not self.session_id:
            self.conversations = []
            self.active_conversation_id = None
            return []
        conversations = await self._store.list_conversations(self.session_id)
        summaries = await summarize_conversations(self._store, conversations)
        self.conversations = summaries
        self.active_conversation_id = summaries[0].id if summaries else None
        return summaries

    async def refresh_messages(self) -> Optional[list[Message]]:
        """Reload the active conversation's messages; skipped while generating."""
        if self.transport.is_generating:
            return None
        if not self.active_conversation_id:
            self.messages = []
            return self.messages
        self.messages = await self._store.list_messages(self.active_conversation_id)
        return self.messages

    def select_conversation(self, conversation_id: Optional[str]) -> None:
        if conversation_id != self.active_conversation_id:
            self.active_conversation_id = conversation_id
            self.messages = []

    async def create_conversation(self, name: Optional[str] = None) -> Optional[Conversation]:
        if not self.session_id or not self.user_id:
            return None
        conversation = await self._store.create_conversation(
            session_id=self.session_id, user_id=self.user_id, name=name
        )
        await self.refresh_conversations()
        self.select_conversation(conversation.id)
        return conversation

    async def get_or_create_conversation_id(self) -> Optional[str]:
        """Return the active conversation id, creating a conversation if there is none."""
        async with self._create_lock:
            if self.active_conversation_id:
                return self.active_conversation_id
            if not self.session_id or not self.user_id:
                return None
            try:
                conversation = await self._store.create_conversation(
                    session_id=self.session_id, user_id=self.user_id
                )
            except Exception as e:
                logger.error("Failed to create conversation for session %s: %s", self.session_id, e)
                self._report(e)
                return None
            self.active_conversation_id = conversation.id
            self.messages = []
            return conversation.id

    async def send_message(
        self,
        content: str,
        *,
        mentioned_content: Optional[Sequence[Mention]] = None,
        selection_data: Optional[SelectionData] = None,
        html_content: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> AsyncIterator[UIChunk]:
        if is_blank(content):
            return
        conversation_id = conversation_id or await self.get_or_create_conversation_id()
        if not conversation_id:
            logger.warning("No conversation available for session %s; message dropped", self.session_id)
            return

        mentions = list(mentioned_content or [])
        self.transport.update_options(
            session_id=self.session_id,
            user_id=self.user_id,
            selection_data=selection_data,
            mentioned_content=mentions,
        )

        metadata = {
            "mentions": [mention.to_dict() for mention in mentions] or None,
            "selectionData": selection_data.to_dict() if selection_data is not None else None,
            "htmlContent": html_content,
        }
        user_message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role="user",
            parts=[TextPart(text=content)],
            metadata={key: value for key, value in metadata.items() if value is not None},
            created_at=_utc_now(),
        )
        try:
            await self._store.create_message(user_message)
        except Exception as e:
            logger.error("Failed to persist user message %s: %s", user_message.id, e)
            self._report(e if isinstance(e, PersistenceWriteError) else PersistenceWriteError(str(e)))
        self.messages.append(user_message)

        self._abort_signal = asyncio.Event()
        assistant_shown = False
        try:
            async for chunk in self.transport.send_messages(
                conversation_id,
                list(self.messages),
                abort_signal=self._abort_signal,
                on_finish=self._on_finish,
            ):
                current = self.transport.current_message
                if current is not None and not assistant_shown:
                    self.messages.append(current)
                    assistant_shown = True
                yield chunk
        except GenerationError as e:
            self.messages.append(
                Message(
                    id=str(uuid.uuid4()),
                    conversation_id=conversation_id,
                    role="assistant",
                    parts=[TextPart(text=f"An error occurred: {e}")],
                    metadata={"isError": True},
                    created_at=_utc_now(),
                )
            )
            self._report(e)
        finally:
            self._abort_signal = None

    def stop(self) -> None:
        if self._abort_signal is not None:
            self._abort_signal.set()

    async def update_message_parts(self, message_id: str, parts: list[Part]) -> None:
        if not self.active_conversation_id:
            return
        try:
            await self._store.update_message_parts(message_id, parts)
        except Exception as e:
            logger.error("Failed to update parts of message %s: %s", message_id, e)
            return
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                self.messages[index] = dataclasses.replace(message, parts=list(parts))

    async def _on_finish(self, message: Message) -> None:
        conversation_id = message.conversation_id or self.active_conversation_id
        if message.role != "assistant" or not conversation_id:
            logger.warning("Skipping persistence of message %s (role=%s)", message.id, message.role)
            return
        record = dataclasses.replace(
            message,
            conversation_id=conversation_id,
            parts=list(message.parts),
            created_at=message.created_at or _utc_now(),
        )
        try:
            await self._store.create_message(record)
        except Exception as e:
            logger.error("Failed to persist assistant message %s: %s", message.id, e)

    def _report(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Error handler failed")
