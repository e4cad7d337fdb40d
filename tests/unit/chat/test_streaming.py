import asyncio
from typing import Any, List

import pytest
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessageChunk, HumanMessage, ToolMessage
from langchain_core.messages.tool import tool_call_chunk
from langchain_core.outputs import ChatGenerationChunk
from pydantic import Field

from src.chat.errors import ToolExecutionError
from src.chat.streaming import LangChainModelStreamer, ModelRequest, WordSmoother
from src.tools.registry import ToolRegistry
from src.tools.types import ToolDescriptor


class FakeToolChatModel(BaseChatModel):
    """Chat model that streams one scripted response per call."""

    responses: List[List[Any]] = Field(default_factory=list)
    calls: List[Any] = Field(default_factory=list)
    bound_tools: List[Any] = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "fake-tool-chat"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise NotImplementedError

    async def _astream(self, messages, stop=None, run_manager=None, **kwargs):
        self.calls.append(list(messages))
        for chunk in self.responses[len(self.calls) - 1]:
            yield ChatGenerationChunk(message=chunk)

    def bind_tools(self, tools, *, tool_choice=None, **kwargs):
        self.bound_tools = list(tools)
        return self


def _registry(*descriptors: ToolDescriptor) -> ToolRegistry:
    registry = ToolRegistry()
    for descriptor in descriptors:
        registry.register(descriptor, source="test")
    return registry


def _descriptor(name: str, executor) -> ToolDescriptor:
    return ToolDescriptor(
        name=name,
        description=f"{name} tool",
        input_schema={"type": "object", "properties": {"q": {"type": "string"}}},
        executor=executor,
    )


async def _collect(streamer, request, abort=None):
    return [chunk async for chunk in streamer.stream(request, abort or asyncio.Event())]


@pytest.mark.asyncio
async def test_text_only_response_streams_one_text_part():
    model = FakeToolChatModel(responses=[[AIMessageChunk(content="Hello "), AIMessageChunk(content="there")]])
    streamer = LangChainModelStreamer(model)

    chunks = await _collect(streamer, ModelRequest(messages=[HumanMessage(content="hi")]))

    types = [chunk.type for chunk in chunks]
    assert types == ["start-step", "text-start", "text-delta", "text-delta", "text-end", "finish-step"]
    assert "".join(c.data["delta"] for c in chunks if c.type == "text-delta") == "Hello there"
    assert model.bound_tools == []


@pytest.mark.asyncio
async def test_tool_call_runs_between_steps_in_state_order():
    async def search(arguments):
        return {"hits": [arguments["q"]]}

    model = FakeToolChatModel(
        responses=[
            [
                AIMessageChunk(content="Searching."),
                AIMessageChunk(
                    content="",
                    tool_call_chunks=[tool_call_chunk(name="search", args='{"q": ', id="call-1", index=0)],
                ),
                AIMessageChunk(
                    content="",
                    tool_call_chunks=[tool_call_chunk(name=None, args='"beta"}', id=None, index=0)],
                ),
            ],
            [AIMessageChunk(content="Found it.")],
        ]
    )
    streamer = LangChainModelStreamer(model)
    request = ModelRequest(messages=[HumanMessage(content="find beta")], tools=_registry(_descriptor("search", search)))

    chunks = await _collect(streamer, request)

    tool_types = [c.type for c in chunks if c.type.startswith("tool-")]
    assert tool_types == ["tool-input-start", "tool-input-delta", "tool-input-delta", "tool-input-available", "tool-output-available"]
    available = next(c for c in chunks if c.type == "tool-input-available")
    assert available.data["input"] == {"q": "beta"}
    output = next(c for c in chunks if c.type == "tool-output-available")
    assert output.data == {"toolCallId": "call-1", "output": {"hits": ["beta"]}}

    # text part closes before the tool part starts
    types = [c.type for c in chunks]
    assert types.index("text-end") < types.index("tool-input-start")
    assert types.count("start-step") == 2

    assert model.bound_tools[0]["function"]["name"] == "search"
    second_history = model.calls[1]
    assert isinstance(second_history[-1], ToolMessage)
    assert second_history[-1].tool_call_id == "call-1"


@pytest.mark.asyncio
async def test_tool_failure_becomes_output_error_and_is_fed_back():
    async def broken(arguments):
        raise ToolExecutionError("provider down")

    model = FakeToolChatModel(
        responses=[
            [
                AIMessageChunk(
                    content="",
                    tool_call_chunks=[tool_call_chunk(name="search", args='{"q": "x"}', id="call-1", index=0)],
                )
            ],
            [AIMessageChunk(content="Sorry.")],
        ]
    )
    streamer = LangChainModelStreamer(model)
    request = ModelRequest(messages=[HumanMessage(content="x")], tools=_registry(_descriptor("search", broken)))

    chunks = await _collect(streamer, request)

    error = next(c for c in chunks if c.type == "tool-output-error")
    assert error.data == {"toolCallId": "call-1", "errorText": "provider down"}
    assert model.calls[1][-1].status == "error"


@pytest.mark.asyncio
async def test_unknown_tool_reports_error():
    model = FakeToolChatModel(
        responses=[
            [
                AIMessageChunk(
                    content="",
                    tool_call_chunks=[tool_call_chunk(name="ghost", args="{}", id="call-1", index=0)],
                )
            ],
            [AIMessageChunk(content="ok")],
        ]
    )
    streamer = LangChainModelStreamer(model)

    chunks = await _collect(streamer, ModelRequest(messages=[HumanMessage(content="x")]))

    error = next(c for c in chunks if c.type == "tool-output-error")
    assert "ghost" in error.data["errorText"]


@pytest.mark.asyncio
async def test_step_limit_stops_tool_loop():
    calls = []

    async def search(arguments):
        calls.append(arguments)
        return "again"

    looping_step = [
        AIMessageChunk(
            content="",
            tool_call_chunks=[tool_call_chunk(name="search", args="{}", id=None, index=0)],
        )
    ]
    model = FakeToolChatModel(responses=[looping_step, looping_step, looping_step])
    streamer = LangChainModelStreamer(model)
    request = ModelRequest(
        messages=[HumanMessage(content="loop")],
        tools=_registry(_descriptor("search", search)),
        max_steps=2,
    )

    chunks = await _collect(streamer, request)

    assert len(model.calls) == 2
    assert len(calls) == 2
    assert [c.type for c in chunks].count("finish-step") == 2


@pytest.mark.asyncio
async def test_abort_before_stream_yields_nothing():
    model = FakeToolChatModel(responses=[[AIMessageChunk(content="never")]])
    abort = asyncio.Event()
    abort.set()

    chunks = await _collect(LangChainModelStreamer(model), ModelRequest(messages=[]), abort)

    assert chunks == []
    assert model.calls == []


@pytest.mark.asyncio
async def test_smoothing_releases_whole_words():
    model = FakeToolChatModel(responses=[[AIMessageChunk(content="Ship th"), AIMessageChunk(content="e beta now")]])
    streamer = LangChainModelStreamer(model, smooth_delay_ms=1)

    chunks = await _collect(streamer, ModelRequest(messages=[HumanMessage(content="hi")]))

    deltas = [c.data["delta"] for c in chunks if c.type == "text-delta"]
    assert deltas == ["Ship ", "the ", "beta ", "now"]


def test_word_smoother_buffers_partial_words():
    smoother = WordSmoother()

    assert smoother.push("hel") == []
    assert smoother.push("lo wor") == ["hello "]
    assert smoother.flush() == "wor"
    assert smoother.flush() == ""
