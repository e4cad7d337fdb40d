# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""UI message stream chunks and the accumulator that folds them into a message."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .models import Message, TextPart, ToolCallPart, ToolState, can_advance

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "unknown_error"


@dataclass(slots=True)
class UIChunk:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}


def start_chunk(message_id: str) -> UIChunk:
    return UIChunk("start", {"messageId": message_id})


def text_start(part_id: str) -> UIChunk:
    return UIChunk("text-start", {"id": part_id})


def text_delta(part_id: str, delta: str) -> UIChunk:
    return UIChunk("text-delta", {"id": part_id, "delta": delta})


def text_end(part_id: str) -> UIChunk:
    return UIChunk("text-end", {"id": part_id})


def tool_input_start(tool_call_id: str, tool_name: str) -> UIChunk:
    return UIChunk("tool-input-start", {"toolCallId": tool_call_id, "toolName": tool_name})


def tool_input_delta(tool_call_id: str, delta: str) -> UIChunk:
    return UIChunk("tool-input-delta", {"toolCallId": tool_call_id, "inputTextDelta": delta})


def tool_input_available(tool_call_id: str, tool_name: str, tool_input: Any) -> UIChunk:
    return UIChunk(
        "tool-input-available",
        {"toolCallId": tool_call_id, "toolName": tool_name, "input": tool_input},
    )


def tool_output_available(tool_call_id: str, output: Any) -> UIChunk:
    return UIChunk("tool-output-available", {"toolCallId": tool_call_id, "output": output})


def tool_output_error(tool_call_id: str, error_text: str) -> UIChunk:
    return UIChunk("tool-output-error", {"toolCallId": tool_call_id, "errorText": error_text})


def error_chunk(error_text: str) -> UIChunk:
    return UIChunk("error", {"errorText": error_text})


def format_stream_error(error: Any) -> str:
    """Render an in-stream error as the text shown to the user."""
    if error is None:
        return UNKNOWN_ERROR
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return str(error)
    try:
        return json.dumps(error, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(error)


class MessageAccumulator:
    """Builds the assistant message visible in the UI from a chunk stream.

    Tool parts only move forward through their states; a chunk that would
    regress a part is ignored and logged.
    """

    def __init__(self, message_id: str, conversation_id: Optional[str] = None) -> None:
        self.message = Message(id=message_id, conversation_id=conversation_id, role="assistant", parts=[])
        self._text_parts: dict[str, TextPart] = {}
        self._tool_parts: dict[str, ToolCallPart] = {}
        self._input_buffers: dict[str, str] = {}

    @property
    def has_content(self) -> bool:
        return bool(self.message.parts)

    def apply(self, chunk: UIChunk) -> None:
        data = chunk.data
        if chunk.type == "start":
            message_id = data.get("messageId")
            if message_id:
                self.message.id = message_id
        elif chunk.type == "text-start":
            part = TextPart(text="", state="streaming")
            self._text_parts[data["id"]] = part
            self.message.parts.append(part)
        elif chunk.type == "text-delta":
            part = self._text_parts.get(data["id"])
            if part is None:
                part = TextPart(text="", state="streaming")
                self._text_parts[data["id"]] = part
                self.message.parts.append(part)
            part.text += data.get("delta", "")
        elif chunk.type == "text-end":
            part = self._text_parts.get(data["id"])
            if part is not None:
                part.state = "done"
        elif chunk.type == "tool-input-start":
            part = ToolCallPart(
                tool_call_id=data["toolCallId"],
                tool_name=data.get("toolName", ""),
                state=ToolState.INPUT_STREAMING.value,
            )
            self._tool_parts[part.tool_call_id] = part
            self.message.parts.append(part)
        elif chunk.type == "tool-input-delta":
            call_id = data["toolCallId"]
            self._input_buffers[call_id] = self._input_buffers.get(call_id, "") + data.get("inputTextDelta", "")
        elif chunk.type == "tool-input-available":
            part = self._tool_part(data["toolCallId"], data.get("toolName", ""))
            if self._advance(part, ToolState.INPUT_AVAILABLE):
                part.input = data.get("input")
        elif chunk.type == "tool-output-available":
            part = self._tool_part(data["toolCallId"])
            if self._advance(part, ToolState.OUTPUT_AVAILABLE):
                part.output = data.get("output")
        elif chunk.type == "tool-output-error":
            part = self._tool_part(data["toolCallId"])
            if self._advance(part, ToolState.OUTPUT_ERROR):
                part.error_text = data.get("errorText")

    def finalize(self) -> Message:
        for part in self.message.parts:
            if isinstance(part, TextPart) and part.state == "streaming":
                part.state = "done"
        return self.message

    def _tool_part(self, call_id: str, tool_name: str = "") -> ToolCallPart:
        part = self._tool_parts.get(call_id)
        if part is None:
            part = ToolCallPart(tool_call_id=call_id, tool_name=tool_name, state=ToolState.INPUT_STREAMING.value)
            self._tool_parts[call_id] = part
            self.message.parts.append(part)
        return part

    @staticmethod
    def _advance(part: ToolCallPart, target: ToolState) -> bool:
        if not can_advance(part.state, target.value):
            logger.warning(
                "Ignoring tool state regression for %s: %s -> %s",
                part.tool_call_id,
                part.state,
                target.value,
            )
            return False
        part.state = target.value
        return True
