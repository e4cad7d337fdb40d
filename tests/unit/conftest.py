import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from src.chat.chunks import UIChunk
from src.chat.models import CalendarEvent, Human, SessionRecord
from src.chat.transport import GenerationTransport
from src.config.configuration import ChatSettings
from src.llms.llm import LLMConnection
from src.server.conversation.store import SQLiteChatStore
from src.tools.mcp import ProviderTool
from src.tools.registry import ToolRegistryAssembler


class ScriptedStreamer:
    """Model streamer that replays fixed chunks and records each request."""

    def __init__(self, chunks=(), *, error: Optional[BaseException] = None, hang: bool = False) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.requests = []

    async def stream(self, request, abort_signal):
        self.requests.append(request)
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()


class FakeProviderConnection:
    def __init__(
        self,
        name: str,
        tools: List[ProviderTool],
        *,
        results: Optional[Dict[str, Any]] = None,
        list_error: Optional[Exception] = None,
    ) -> None:
        self.name = name
        self._tools = tools
        self._results = results or {}
        self._list_error = list_error
        self.calls = []
        self.close_count = 0

    async def list_tools(self) -> List[ProviderTool]:
        if self._list_error is not None:
            raise self._list_error
        return list(self._tools)

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        self.calls.append((tool_name, arguments))
        return self._results.get(tool_name, f"{self.name}:{tool_name}")

    async def aclose(self) -> None:
        await asyncio.sleep(0)
        self.close_count += 1


def text_reply(text: str, part_id: str = "t1") -> List[UIChunk]:
    return [
        UIChunk("start-step"),
        UIChunk("text-start", {"id": part_id}),
        UIChunk("text-delta", {"id": part_id, "delta": text}),
        UIChunk("text-end", {"id": part_id}),
        UIChunk("finish-step"),
    ]


@pytest.fixture
def scripted_streamer():
    return ScriptedStreamer


@pytest.fixture
def fake_connection():
    return FakeProviderConnection


@pytest.fixture
def reply_chunks():
    return text_reply


@pytest.fixture
def tool_model_connection() -> LLMConnection:
    return LLMConnection(type="Custom", api_base="https://api.example.com/v1", custom_model="gpt-4o")


@pytest.fixture
def plain_model_connection() -> LLMConnection:
    return LLMConnection(type="HyprLocal", api_base="http://localhost:11434/v1")


@pytest_asyncio.fixture
async def chat_store(tmp_path):
    store = SQLiteChatStore(str(tmp_path / "chat_store.db"))
    await store.init()
    await store.upsert_session(
        SessionRecord(
            id="session-1",
            user_id="user-1",
            title="Weekly sync",
            raw_memo_html="<p>raw notes</p>",
            enhanced_memo_html="<p>Ship the beta on Friday</p>",
            pre_meeting_memo_html=None,
            words=[{"text": "hello", "speaker": "Alice"}],
            created_at=datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc),
        )
    )
    await store.upsert_human(
        Human(
            id="human-1",
            full_name="Alice Kim",
            email="alice@example.com",
            job_title="PM",
            linkedin_username="alicekim",
        )
    )
    await store.add_participant("session-1", "human-1")
    await store.set_event(
        "session-1",
        CalendarEvent(id="event-1", name="Weekly sync", start_date="09:00", end_date="09:30"),
    )
    yield store
    await store.close()


@pytest.fixture
def make_transport(tool_model_connection):
    def build(
        store,
        streamer,
        *,
        providers=(),
        connector=None,
        connection: Optional[LLMConnection] = None,
        settings: Optional[ChatSettings] = None,
        license_key: Optional[str] = None,
    ) -> GenerationTransport:
        settings = settings or ChatSettings(smooth_stream_delay_ms=0)
        active_connection = connection or tool_model_connection

        async def connection_provider() -> LLMConnection:
            return active_connection

        async def tool_providers():
            return list(providers)

        async def license_key_provider():
            return license_key

        assembler = ToolRegistryAssembler(
            store,
            settings,
            connector=connector,
            license_key_provider=license_key_provider,
        )
        return GenerationTransport(
            store,
            settings=settings,
            tool_assembler=assembler,
            streamer_factory=lambda _connection: streamer,
            connection_provider=connection_provider,
            tool_providers=tool_providers,
        )

    return build
