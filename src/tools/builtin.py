# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Tools that run in-process against the conversation store."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.chat.errors import ToolExecutionError
from src.chat.models import SelectionData, SessionFilter, SessionRecord
from src.chat.store import ChatStore
from src.utils.text_utils import brief

from .types import ToolDescriptor

logger = logging.getLogger(__name__)

SEARCH_LIMIT_PER_KEYWORD = 5
EXCERPT_LENGTH = 200


def _session_result(record: SessionRecord) -> Dict[str, Any]:
    content = record.enhanced_memo_html or record.raw_memo_html or ""
    return {
        "id": record.id,
        "title": record.title or "Untitled",
        "createdAt": record.created_at.isoformat(),
        "excerpt": brief(content, EXCERPT_LENGTH) if content else "",
    }


def _parse_date(value: Any, field_name: str) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ToolExecutionError(f"{field_name} is required")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ToolExecutionError(f"{field_name} is not an ISO date: {value}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _search_multi_keywords(store: ChatStore, user_id: str):
    async def execute(arguments: Dict[str, Any]) -> List[Dict[str, Any]]:
        keywords = arguments.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [keywords]
        results: List[Dict[str, Any]] = []
        seen = set()
        for keyword in keywords:
            if not isinstance(keyword, str) or not keyword.strip():
                continue
            records = await store.list_sessions(
                SessionFilter(
                    type="search",
                    user_id=user_id,
                    query=keyword.strip(),
                    limit=SEARCH_LIMIT_PER_KEYWORD,
                )
            )
            for record in records:
                if record.id in seen:
                    continue
                seen.add(record.id)
                results.append(_session_result(record))
        logger.debug("Keyword search over %d keywords found %d sessions", len(keywords), len(results))
        return results

    return execute


def _search_date_range(store: ChatStore, user_id: str):
    async def execute(arguments: Dict[str, Any]) -> List[Dict[str, Any]]:
        start = _parse_date(arguments.get("startDate"), "startDate")
        end = _parse_date(arguments.get("endDate"), "endDate")
        if end < start:
            raise ToolExecutionError("endDate must not be before startDate")
        records = await store.list_sessions(
            SessionFilter(type="dateRange", user_id=user_id, start=start, end=end, limit=20)
        )
        return [_session_result(record) for record in records]

    return execute


def _edit_enhanced_note(store: ChatStore, selection: SelectionData, session_id: Optional[str]):
    target_session_id = selection.session_id or session_id

    async def execute(arguments: Dict[str, Any]) -> Dict[str, Any]:
        new_text = arguments.get("newText")
        if not isinstance(new_text, str):
            raise ToolExecutionError("newText is required")
        if not target_session_id:
            raise ToolExecutionError("No note is selected")
        record = await store.get_session(target_session_id)
        if record is None:
            raise ToolExecutionError(f"Note {target_session_id} not found")

        content = record.enhanced_memo_html or ""
        start, end = selection.start_offset, selection.end_offset
        if content[start:end] != selection.text:
            start = content.find(selection.text) if selection.text else -1
            if start < 0:
                raise ToolExecutionError("The selected text is no longer in the note")
            end = start + len(selection.text)

        # A proposal only; the note is written by whoever accepts it.
        return {
            "sessionId": target_session_id,
            "originalText": selection.text,
            "newText": new_text,
            "startOffset": start,
            "endOffset": end,
            "updatedContent": content[:start] + new_text + content[end:],
        }

    return execute


def build_builtin_tools(
    store: ChatStore,
    *,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    selection_data: Optional[SelectionData] = None,
) -> List[ToolDescriptor]:
    owner = user_id or ""
    tools: List[ToolDescriptor] = []
    if selection_data is not None:
        tools.append(
            ToolDescriptor(
                name="edit_enhanced_note",
                description=(
                    "Propose a replacement for the text the user selected in the enhanced note. "
                    "Only call this when the user asks to change the selected text."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "newText": {"type": "string", "description": "Text that replaces the selection."}
                    },
                    "required": ["newText"],
                },
                executor=_edit_enhanced_note(store, selection_data, session_id),
            )
        )
    tools.append(
        ToolDescriptor(
            name="search_sessions_date_range",
            description="Find the user's notes created between two ISO 8601 dates.",
            input_schema={
                "type": "object",
                "properties": {
                    "startDate": {"type": "string", "description": "Start of the range, ISO 8601."},
                    "endDate": {"type": "string", "description": "End of the range, ISO 8601."},
                },
                "required": ["startDate", "endDate"],
            },
            executor=_search_date_range(store, owner),
        )
    )
    tools.append(
        ToolDescriptor(
            name="search_sessions_multi_keywords",
            description="Search the user's notes for any of several keywords.",
            input_schema={
                "type": "object",
                "properties": {
                    "keywords": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Keywords to search for; results are merged.",
                    }
                },
                "required": ["keywords"],
            },
            executor=_search_multi_keywords(store, owner),
        )
    )
    return tools
