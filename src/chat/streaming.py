# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Drive a langchain chat model through a multi-step tool loop as UI chunks."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessageChunk, BaseMessage, ToolMessage, message_chunk_to_message

from src.tools.registry import ToolRegistry
from src.utils.text_utils import to_json_text

from .chunks import (
    UIChunk,
    text_delta,
    text_end,
    text_start,
    tool_input_available,
    tool_input_delta,
    tool_input_start,
    tool_output_available,
    tool_output_error,
)

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\S+\s+")


@dataclass(slots=True)
class ModelRequest:
    messages: list[BaseMessage]
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    tool_choice: str = "auto"
    max_steps: int = 10


class ModelStreamer(Protocol):
    def stream(self, request: ModelRequest, abort_signal: asyncio.Event) -> AsyncIterator[UIChunk]: ...


class WordSmoother:
    """Re-chunks streamed text so whole words are released one at a time."""

    def __init__(self) -> None:
        self._buffer = ""

    def push(self, text: str) -> list[str]:
        self._buffer += text
        words: list[str] = []
        while True:
            match = _WORD_RE.match(self._buffer)
            if match is None:
                break
            words.append(match.group(0))
            self._buffer = self._buffer[match.end():]
        return words

    def flush(self) -> str:
        rest, self._buffer = self._buffer, ""
        return rest


@dataclass(slots=True)
class _PendingCall:
    id: str
    name: str
    args: str = ""
    started: bool = False
    available: bool = False


def _chunk_text(chunk: AIMessageChunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    pieces = []
    for item in content or []:
        if isinstance(item, str):
            pieces.append(item)
        elif isinstance(item, dict) and item.get("type") == "text":
            pieces.append(str(item.get("text", "")))
    return "".join(pieces)


def _parse_args(raw: str) -> Optional[Any]:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return None


class LangChainModelStreamer:
    """Streams a `BaseChatModel`, executing requested tools between steps.

    Each step streams one model response. When the response asks for tools,
    they run through the registry and their results are appended to the
    history before the next step. The loop stops on a response without tool
    calls, after `max_steps`, or when `abort_signal` is set.
    """

    def __init__(self, model: BaseChatModel, *, smooth_delay_ms: int = 0) -> None:
        self._model = model
        self._delay = max(0, smooth_delay_ms) / 1000

    async def stream(self, request: ModelRequest, abort_signal: asyncio.Event) -> AsyncIterator[UIChunk]:
        history = list(request.messages)
        runnable: Any = self._model
        if len(request.tools):
            runnable = self._model.bind_tools(
                [descriptor.to_openai_tool() for descriptor in request.tools.descriptors()],
                tool_choice=request.tool_choice,
            )

        for step in range(request.max_steps):
            if abort_signal.is_set():
                return
            yield UIChunk("start-step")

            gathered: Optional[AIMessageChunk] = None
            text_id: Optional[str] = None
            smoother = WordSmoother() if self._delay else None
            calls: dict[Any, _PendingCall] = {}
            current: Optional[_PendingCall] = None

            async with aclosing(runnable.astream(history)) as model_stream:
                async for chunk in model_stream:
                    if abort_signal.is_set():
                        return
                    gathered = chunk if gathered is None else gathered + chunk

                    text = _chunk_text(chunk)
                    if text:
                        if current is not None:
                            for out in self._complete_call(current):
                                yield out
                            current = None
                        if text_id is None:
                            text_id = f"text_{uuid.uuid4().hex}"
                            yield text_start(text_id)
                        pieces = smoother.push(text) if smoother else [text]
                        for piece in pieces:
                            yield text_delta(text_id, piece)
                            if self._delay:
                                await asyncio.sleep(self._delay)

                    for tool_chunk in getattr(chunk, "tool_call_chunks", None) or []:
                        key = tool_chunk.get("index")
                        if key is None:
                            key = tool_chunk.get("id")
                        call = calls.get(key)
                        if call is None:
                            call = _PendingCall(
                                id=tool_chunk.get("id") or f"call_{uuid.uuid4().hex}",
                                name=tool_chunk.get("name") or "",
                            )
                            calls[key] = call
                        elif tool_chunk.get("name") and not call.name:
                            call.name = tool_chunk["name"]
                        args_delta = tool_chunk.get("args") or ""
                        call.args += args_delta

                        if call is not current:
                            if text_id is not None:
                                for out in self._close_text(text_id, smoother):
                                    yield out
                                text_id = None
                            if current is not None:
                                for out in self._complete_call(current):
                                    yield out
                            current = call
                        if not call.started and call.name:
                            call.started = True
                            yield tool_input_start(call.id, call.name)
                            if call.args:
                                yield tool_input_delta(call.id, call.args)
                        elif call.started and args_delta:
                            yield tool_input_delta(call.id, args_delta)

            if text_id is not None:
                for out in self._close_text(text_id, smoother):
                    yield out

            if gathered is None:
                yield UIChunk("finish-step")
                return

            pending = list(calls.values())
            by_id = {call.id: call for call in pending}
            tool_calls = list(gathered.tool_calls)
            invalid_calls = list(getattr(gathered, "invalid_tool_calls", None) or [])
            for position, tool_call in enumerate(tool_calls):
                if tool_call.get("id"):
                    call = by_id.get(tool_call["id"])
                else:
                    call = pending[position] if position < len(pending) else None
                if call is not None:
                    tool_call["id"] = call.id
                else:
                    call = _PendingCall(id=tool_call.get("id") or f"call_{uuid.uuid4().hex}", name=tool_call["name"])
                    tool_call["id"] = call.id
                if not call.started:
                    call.started = True
                    yield tool_input_start(call.id, tool_call["name"])
                if not call.available:
                    call.available = True
                    yield tool_input_available(call.id, tool_call["name"], tool_call.get("args") or {})
            for invalid in invalid_calls:
                call_id = invalid.get("id") or f"call_{uuid.uuid4().hex}"
                invalid["id"] = call_id
                call = by_id.get(call_id)
                if call is None or not call.started:
                    yield tool_input_start(call_id, invalid.get("name") or "")
                if call is None or not call.available:
                    yield tool_input_available(call_id, invalid.get("name") or "", invalid.get("args"))

            if not tool_calls and not invalid_calls:
                yield UIChunk("finish-step")
                return

            history.append(message_chunk_to_message(gathered))
            for tool_call in tool_calls:
                if abort_signal.is_set():
                    return
                async for out in self._run_tool(request.tools, tool_call, history):
                    yield out
            for invalid in invalid_calls:
                error_text = invalid.get("error") or f"Invalid arguments for tool {invalid.get('name')}"
                yield tool_output_error(invalid["id"], error_text)
                history.append(ToolMessage(content=error_text, tool_call_id=invalid["id"], status="error"))

            yield UIChunk("finish-step")
            logger.debug("Model step %d finished with %d tool calls", step + 1, len(tool_calls))

        logger.info("Stopped after reaching the step limit of %d", request.max_steps)

    def _close_text(self, text_id: str, smoother: Optional[WordSmoother]) -> list[UIChunk]:
        out = []
        if smoother is not None:
            rest = smoother.flush()
            if rest:
                out.append(text_delta(text_id, rest))
        out.append(text_end(text_id))
        return out

    @staticmethod
    def _complete_call(call: _PendingCall) -> list[UIChunk]:
        # Arguments are final once the model moves on; unparseable ones wait for the gathered message.
        if not call.started or call.available:
            return []
        args = _parse_args(call.args)
        if args is None:
            return []
        call.available = True
        return [tool_input_available(call.id, call.name, args)]

    async def _run_tool(
        self, tools: ToolRegistry, tool_call: dict[str, Any], history: list[BaseMessage]
    ) -> AsyncIterator[UIChunk]:
        call_id = tool_call["id"]
        name = tool_call["name"]
        descriptor = tools.get(name)
        try:
            if descriptor is None:
                raise LookupError(f"Unknown tool: {name}")
            output = await descriptor.executor(tool_call.get("args") or {})
        except Exception as e:
            error_text = str(e) or type(e).__name__
            logger.warning("Tool %s failed: %s", name, error_text)
            yield tool_output_error(call_id, error_text)
            history.append(ToolMessage(content=error_text, tool_call_id=call_id, status="error"))
            return
        yield tool_output_available(call_id, output)
        history.append(ToolMessage(content=to_json_text(output), tool_call_id=call_id))
