# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Conversation, message and part records shared by the chat pipeline."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]
ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})


class ToolState(str, Enum):
    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_ERROR = "output-error"


TERMINAL_TOOL_STATES = frozenset({ToolState.OUTPUT_AVAILABLE.value, ToolState.OUTPUT_ERROR.value})

_TOOL_STATE_RANK = {
    ToolState.INPUT_STREAMING.value: 0,
    ToolState.INPUT_AVAILABLE.value: 1,
    ToolState.OUTPUT_AVAILABLE.value: 2,
    ToolState.OUTPUT_ERROR.value: 2,
}


def can_advance(current: str, target: str) -> bool:
    """Return True when a tool part may move from `current` to `target`."""
    if current in TERMINAL_TOOL_STATES:
        return False
    return _TOOL_STATE_RANK.get(target, -1) > _TOOL_STATE_RANK.get(current, -1)


@dataclass(slots=True)
class TextPart:
    text: str
    state: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "text", "text": self.text}
        if self.state is not None:
            data["state"] = self.state
        return data


@dataclass(slots=True)
class ToolCallPart:
    tool_call_id: str
    tool_name: str
    state: str
    input: Any = None
    output: Any = None
    error_text: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "dynamic-tool",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "state": self.state,
        }
        if self.input is not None:
            data["input"] = self.input
        if self.output is not None:
            data["output"] = self.output
        if self.error_text is not None:
            data["errorText"] = self.error_text
        return data


@dataclass(slots=True)
class RawPart:
    """A part type the pipeline does not interpret; kept verbatim."""

    data: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data)


Part = Union[TextPart, ToolCallPart, RawPart]


def is_tool_part_type(part_type: Any) -> bool:
    return isinstance(part_type, str) and (part_type == "dynamic-tool" or part_type.startswith("tool-"))


def part_from_dict(data: dict[str, Any]) -> Part:
    part_type = data.get("type")
    if part_type == "text":
        return TextPart(text=str(data.get("text") or ""), state=data.get("state"))
    if is_tool_part_type(part_type):
        tool_name = data.get("toolName")
        if not tool_name and part_type != "dynamic-tool":
            tool_name = part_type[len("tool-"):]
        return ToolCallPart(
            tool_call_id=str(data.get("toolCallId") or ""),
            tool_name=str(tool_name or ""),
            state=str(data.get("state") or ""),
            input=data.get("input"),
            output=data.get("output"),
            error_text=data.get("errorText"),
        )
    return RawPart(data=dict(data))


def parts_to_json(parts: list[Part]) -> str:
    return json.dumps([part.to_dict() for part in parts], ensure_ascii=False)


def parts_from_json(raw: str, *, message_id: str = "") -> list[Part]:
    """Decode a stored parts array; undecodable data becomes one empty text part."""
    try:
        items = json.loads(raw)
        if not isinstance(items, list):
            raise ValueError("parts must be a JSON array")
        return [part_from_dict(item) for item in items if isinstance(item, dict)]
    except (TypeError, ValueError) as exc:
        logger.error("Failed to parse message parts for %s: %s", message_id, exc)
        return [TextPart(text="")]


def metadata_from_json(raw: Optional[str], *, message_id: str = "") -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        logger.error("Failed to parse message metadata for %s: %s", message_id, exc)
        return {}
    return data if isinstance(data, dict) else {}


@dataclass(slots=True)
class Conversation:
    id: str
    session_id: str
    user_id: str
    name: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ConversationSummary:
    conversation: Conversation
    first_message: str
    most_recent_timestamp: datetime

    @property
    def id(self) -> str:
        return self.conversation.id


@dataclass(slots=True)
class Message:
    id: str
    conversation_id: Optional[str]
    role: Role
    parts: list[Part]
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))


@dataclass(slots=True)
class SessionSnapshot:
    title: str = ""
    raw_content: str = ""
    enhanced_content: Optional[str] = None
    pre_meeting_content: Optional[str] = None
    words: list[Any] = field(default_factory=list)


@dataclass(slots=True)
class SessionRecord:
    """A note/meeting session owned by the notes application."""

    id: str
    user_id: str
    title: str
    raw_memo_html: str
    enhanced_memo_html: Optional[str]
    pre_meeting_memo_html: Optional[str]
    words: list[Any]
    created_at: datetime

    def to_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            title=self.title or "",
            raw_content=self.raw_memo_html or "",
            enhanced_content=self.enhanced_memo_html,
            pre_meeting_content=self.pre_meeting_memo_html,
            words=list(self.words or []),
        )


@dataclass(slots=True)
class Human:
    id: str
    full_name: Optional[str]
    email: Optional[str] = None
    job_title: Optional[str] = None
    linkedin_username: Optional[str] = None


@dataclass(slots=True)
class CalendarEvent:
    id: str
    name: str
    start_date: str
    end_date: str
    note: str = ""


@dataclass(slots=True)
class Mention:
    id: str
    type: str
    label: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mention":
        return cls(id=str(data.get("id", "")), type=str(data.get("type", "")), label=str(data.get("label", "")))

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "type": self.type, "label": self.label}


@dataclass(slots=True)
class SelectionData:
    text: str
    start_offset: int
    end_offset: int
    session_id: Optional[str]
    timestamp: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SelectionData":
        return cls(
            text=str(data.get("text", "")),
            start_offset=int(data.get("startOffset", data.get("start_offset", 0)) or 0),
            end_offset=int(data.get("endOffset", data.get("end_offset", 0)) or 0),
            session_id=data.get("sessionId", data.get("session_id")),
            timestamp=data.get("timestamp"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class SessionFilter:
    type: Literal["search", "dateRange"]
    user_id: str
    query: str = ""
    limit: int = 10
    start: Optional[datetime] = None
    end: Optional[datetime] = None
