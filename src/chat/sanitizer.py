# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Strip UI-only tool states from history before it is replayed to the model."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .models import Message, ToolCallPart, ToolState

_UNREPLAYABLE_TOOL_STATES = frozenset(
    {
        ToolState.INPUT_AVAILABLE.value,
        ToolState.OUTPUT_AVAILABLE.value,
        ToolState.INPUT_STREAMING.value,
        ToolState.OUTPUT_ERROR.value,
    }
)


def sanitize_messages(messages: Iterable[Message]) -> list[Message]:
    """Return copies of `messages` without tool parts the model cannot represent."""
    cleaned: list[Message] = []
    for message in messages:
        parts = [
            part
            for part in message.parts
            if not (isinstance(part, ToolCallPart) and part.state in _UNREPLAYABLE_TOOL_STATES)
        ]
        cleaned.append(replace(message, parts=parts))
    return cleaned


def to_model_messages(messages: Iterable[Message]) -> list[BaseMessage]:
    """Convert sanitized messages to langchain messages, skipping empty ones."""
    converted: list[BaseMessage] = []
    for message in messages:
        text = message.text
        if not text:
            continue
        if message.role == "user":
            converted.append(HumanMessage(content=text, id=message.id))
        elif message.role == "assistant":
            converted.append(AIMessage(content=text, id=message.id))
        else:
            converted.append(SystemMessage(content=text, id=message.id))
    return converted
