# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Build the system prompt and the enriched last user message for one turn."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from src.llms.llm import LLMConnection, tools_enabled
from src.prompts.template import render
from src.utils.text_utils import brief, is_blank

from .models import (
    CalendarEvent,
    Human,
    Mention,
    Message,
    SessionFilter,
    SessionRecord,
    SessionSnapshot,
)
from .options import ChatTransportOptions
from .sanitizer import sanitize_messages, to_model_messages
from .store import ChatStore

logger = logging.getLogger(__name__)

RECENT_SESSION_SEARCH_LIMIT = 5
RECENT_SESSIONS_SHOWN = 2


@dataclass(slots=True)
class PreparedPrompt:
    system_prompt: str
    enhanced_content: Optional[str]
    messages: list[BaseMessage]


def format_prompt_date(value: datetime) -> str:
    """Format like ``October 16, 2026 at 3:04 PM``."""
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{value:%B} {value.day}, {value.year} at {hour}:{value:%M} {meridiem}"


def format_event(event: Optional[CalendarEvent]) -> str:
    if event is None:
        return ""
    note = f" - {event.note}" if event.note else ""
    return f"{event.name} ({event.start_date} - {event.end_date}{note})"


def _session_variables(snapshot: Optional[SessionSnapshot]) -> Optional[dict[str, Any]]:
    if snapshot is None:
        return None
    return {
        "title": snapshot.title,
        "rawContent": snapshot.raw_content,
        "enhancedContent": snapshot.enhanced_content,
        "preMeetingContent": snapshot.pre_meeting_content,
        "words": snapshot.words,
    }


def _note_brief(record: SessionRecord) -> str:
    if not is_blank(record.enhanced_memo_html):
        return brief(record.enhanced_memo_html)
    if not is_blank(record.raw_memo_html):
        return brief(record.raw_memo_html)
    return ""


class ContextAssembler:
    """Turns conversation history plus external context into model input."""

    def __init__(
        self,
        store: ChatStore,
        *,
        premium_host: str = "",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._premium_host = premium_host
        self._clock = clock

    async def prepare(
        self,
        messages: Sequence[Message],
        *,
        options: ChatTransportOptions,
        connection: LLMConnection,
        tool_names: Iterable[str] = (),
    ) -> PreparedPrompt:
        model_messages = to_model_messages(sanitize_messages(messages))
        system_prompt = await self.build_system_prompt(options, connection=connection, tool_names=tool_names)

        enhanced: Optional[str] = None
        if model_messages and isinstance(model_messages[-1], HumanMessage):
            if options.mentioned_content or options.selection_data is not None:
                last = model_messages[-1]
                enhanced = await self.enhance_user_content(str(last.content), options)
                model_messages[-1] = HumanMessage(content=enhanced, id=last.id)

        return PreparedPrompt(
            system_prompt=system_prompt,
            enhanced_content=enhanced,
            messages=[SystemMessage(content=system_prompt), *model_messages],
        )

    async def build_system_prompt(
        self,
        options: ChatTransportOptions,
        *,
        connection: LLMConnection,
        tool_names: Iterable[str] = (),
    ) -> str:
        snapshot, participants, event = await asyncio.gather(
            self._load_snapshot(options),
            self._load_participants(options.session_id),
            self._load_event(options.session_id),
        )
        words = snapshot.words if snapshot is not None else []
        return render(
            "chat.system",
            {
                "session": _session_variables(snapshot),
                "words": json.dumps(words or [], ensure_ascii=False, default=str),
                "title": snapshot.title if snapshot else None,
                "enhancedContent": snapshot.enhanced_content if snapshot else None,
                "rawContent": snapshot.raw_content if snapshot else None,
                "preMeetingContent": snapshot.pre_meeting_content if snapshot else None,
                "type": connection.type,
                "date": format_prompt_date(self._clock()),
                "participants": [asdict(participant) for participant in participants],
                "event": format_event(event),
                "toolEnabled": tools_enabled(connection, self._premium_host),
                "mcpTools": [{"name": name} for name in tool_names],
            },
        )

    async def enhance_user_content(self, content: str, options: ChatTransportOptions) -> str:
        mentioned = await self.resolve_mentions(options.mentioned_content, user_id=options.user_id)
        selection = options.selection_data
        return render(
            "chat.user",
            {
                "message": content,
                "mentionedContent": mentioned,
                "selectionData": selection.to_dict() if selection is not None else None,
            },
        )

    async def resolve_mentions(
        self, mentions: Sequence[Mention], *, user_id: Optional[str] = None
    ) -> list[dict[str, str]]:
        """Fetch the content behind each mention; mentions that fail are dropped."""
        if not mentions:
            return []
        resolved = await asyncio.gather(*(self._resolve_mention(mention, user_id) for mention in mentions))
        return [item for item in resolved if item is not None]

    async def _resolve_mention(self, mention: Mention, user_id: Optional[str]) -> Optional[dict[str, str]]:
        try:
            if mention.type == "note":
                content = await self._note_content(mention.id)
            elif mention.type == "human":
                content = await self._human_content(mention.id, user_id)
            else:
                logger.warning("Ignoring mention %s of unknown type %s", mention.label, mention.type)
                return None
        except Exception as e:
            logger.warning('Error fetching content for "%s": %s', mention.label, e)
            return None
        if content is None:
            return None
        return {"type": mention.type, "label": mention.label, "content": content}

    async def _note_content(self, session_id: str) -> Optional[str]:
        record = await self._store.get_session(session_id)
        if record is None:
            return None
        if not is_blank(record.enhanced_memo_html):
            return record.enhanced_memo_html
        if not is_blank(record.raw_memo_html):
            return record.raw_memo_html
        return None

    async def _human_content(self, human_id: str, user_id: Optional[str]) -> Optional[str]:
        human = await self._store.get_human(human_id)
        if human is None:
            return None
        content = (
            f"Name: {human.full_name or ''}\n"
            f"Email: {human.email or ''}\n"
            f"Job Title: {human.job_title or ''}\n"
            f"LinkedIn: {human.linkedin_username or ''}\n"
        )
        if human.full_name:
            try:
                content += await self._recent_sessions_block(human, user_id)
            except Exception as e:
                logger.warning('Error fetching notes for person "%s": %s', human.full_name, e)
        return content

    async def _recent_sessions_block(self, human: Human, user_id: Optional[str]) -> str:
        sessions = await self._store.list_sessions(
            SessionFilter(
                type="search",
                user_id=user_id or "",
                query=human.full_name or "",
                limit=RECENT_SESSION_SEARCH_LIMIT,
            )
        )
        if not sessions:
            return ""
        block = "\nNotes this person participated in:\n"
        for record in sessions[:RECENT_SESSIONS_SHOWN]:
            participants = await self._store.session_list_participants(record.id)
            is_participant = any(
                p.full_name == human.full_name or (human.email and p.email == human.email) for p in participants
            )
            if is_participant:
                block += f'- "{record.title or "Untitled"}": {_note_brief(record)}\n'
        return block

    async def _load_snapshot(self, options: ChatTransportOptions) -> Optional[SessionSnapshot]:
        if options.session_data is not None:
            return options.session_data
        if not options.session_id:
            return None
        try:
            record = await self._store.get_session(options.session_id)
        except Exception as e:
            logger.warning("Error fetching session %s: %s", options.session_id, e)
            return SessionSnapshot()
        return record.to_snapshot() if record is not None else None

    async def _load_participants(self, session_id: Optional[str]) -> list[Human]:
        if not session_id:
            return []
        try:
            return await self._store.session_list_participants(session_id)
        except Exception as e:
            logger.warning("Error fetching participants for session %s: %s", session_id, e)
            return []

    async def _load_event(self, session_id: Optional[str]) -> Optional[CalendarEvent]:
        if not session_id:
            return None
        try:
            return await self._store.session_get_event(session_id)
        except Exception as e:
            logger.warning("Error fetching event for session %s: %s", session_id, e)
            return None
