import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from src.chat.errors import PersistenceWriteError
from src.chat.models import (
    Message,
    RawPart,
    SessionFilter,
    SessionRecord,
    TextPart,
    ToolCallPart,
)
from src.server.conversation.store import SQLiteChatStore


@pytest.mark.asyncio
async def test_create_conversation_and_messages(chat_store):
    conversation = await chat_store.create_conversation(session_id="session-1", user_id="user-1")
    assert conversation.id
    assert conversation.name is None
    assert conversation.created_at.tzinfo is not None

    await chat_store.create_message(
        Message(id="m1", conversation_id=conversation.id, role="user", parts=[TextPart("你好")])
    )
    await chat_store.create_message(
        Message(
            id="m2",
            conversation_id=conversation.id,
            role="assistant",
            parts=[
                ToolCallPart("call-1", "search", "output-available", input={"q": "x"}, output=["r"]),
                TextPart("你好，请问有什么可以帮你？", state="done"),
                RawPart({"type": "reasoning", "text": "thinking"}),
            ],
            metadata={"model": "gpt-4o"},
        )
    )

    messages = await chat_store.list_messages(conversation.id)
    assert [m.id for m in messages] == ["m1", "m2"]
    assert messages[0].text == "你好"
    assert messages[0].metadata == {}
    assert messages[1].parts[0] == ToolCallPart("call-1", "search", "output-available", input={"q": "x"}, output=["r"])
    assert messages[1].parts[2] == RawPart({"type": "reasoning", "text": "thinking"})
    assert messages[1].metadata == {"model": "gpt-4o"}

    stored = await chat_store.get_conversation(conversation.id)
    assert stored.updated_at >= conversation.updated_at


@pytest.mark.asyncio
async def test_messages_keep_insertion_order_with_equal_timestamps(chat_store):
    conversation = await chat_store.create_conversation(session_id="session-1", user_id="user-1")
    moment = datetime(2026, 10, 16, 8, 0, tzinfo=timezone.utc)
    for index in range(3):
        await chat_store.create_message(
            Message(
                id=f"m{index}",
                conversation_id=conversation.id,
                role="user",
                parts=[TextPart(str(index))],
                created_at=moment,
            )
        )

    messages = await chat_store.list_messages(conversation.id)
    assert [m.id for m in messages] == ["m0", "m1", "m2"]
    assert messages[0].created_at == moment


@pytest.mark.asyncio
async def test_rename_update_parts_and_delete(chat_store):
    conversation = await chat_store.create_conversation(session_id="session-1", user_id="user-1")
    assert conversation.name is None

    await chat_store.rename_conversation(conversation.id, "新的会话名称")
    assert (await chat_store.get_conversation(conversation.id)).name == "新的会话名称"

    await chat_store.create_message(
        Message(id="m1", conversation_id=conversation.id, role="assistant", parts=[TextPart("draft")])
    )
    await chat_store.update_message_parts("m1", [TextPart("final")])
    assert (await chat_store.get_message("m1")).text == "final"

    await chat_store.delete_conversation(conversation.id)
    assert await chat_store.get_conversation(conversation.id) is None
    assert await chat_store.get_message("m1") is None


@pytest.mark.asyncio
async def test_unreadable_parts_become_one_empty_text_part(chat_store):
    conversation = await chat_store.create_conversation(session_id="session-1", user_id="user-1")
    await chat_store.create_message(
        Message(id="m1", conversation_id=conversation.id, role="user", parts=[TextPart("ok")])
    )
    with sqlite3.connect(chat_store.db_path) as connection:
        connection.execute("UPDATE messages SET parts = 'not json' WHERE id = 'm1'")
        connection.commit()

    message = await chat_store.get_message("m1")
    assert message.parts == [TextPart(text="")]


@pytest.mark.asyncio
async def test_create_message_failures_raise_persistence_error(chat_store):
    with pytest.raises(PersistenceWriteError):
        await chat_store.create_message(
            Message(id="m1", conversation_id=None, role="user", parts=[TextPart("x")])
        )
    with pytest.raises(PersistenceWriteError):
        await chat_store.create_message(
            Message(id="m2", conversation_id="missing", role="user", parts=[TextPart("x")])
        )


@pytest.mark.asyncio
async def test_upserting_session_keeps_its_conversations(chat_store):
    conversation = await chat_store.create_conversation(session_id="session-1", user_id="user-1")
    record = await chat_store.get_session("session-1")
    record.title = "Weekly sync (renamed)"

    await chat_store.upsert_session(record)

    assert (await chat_store.get_session("session-1")).title == "Weekly sync (renamed)"
    assert await chat_store.get_conversation(conversation.id) is not None
    assert [h.id for h in await chat_store.session_list_participants("session-1")] == ["human-1"]


@pytest.mark.asyncio
async def test_deleting_session_cascades(chat_store):
    conversation = await chat_store.create_conversation(session_id="session-1", user_id="user-1")
    await chat_store.delete_session("session-1")

    assert await chat_store.get_conversation(conversation.id) is None
    assert await chat_store.session_get_event("session-1") is None
    assert await chat_store.session_list_participants("session-1") == []


@pytest.mark.asyncio
async def test_session_lookups(chat_store):
    record = await chat_store.get_session("session-1")
    assert record.words == [{"text": "hello", "speaker": "Alice"}]
    assert record.to_snapshot().enhanced_content == "<p>Ship the beta on Friday</p>"

    event = await chat_store.session_get_event("session-1")
    assert (event.name, event.start_date, event.end_date) == ("Weekly sync", "09:00", "09:30")
    assert (await chat_store.get_human("human-1")).full_name == "Alice Kim"
    assert await chat_store.get_human("nobody") is None


@pytest.mark.asyncio
async def test_list_sessions_search_and_date_range(chat_store):
    await chat_store.upsert_session(
        SessionRecord(
            id="session-2",
            user_id="user-1",
            title="Hiring plan",
            raw_memo_html="",
            enhanced_memo_html=None,
            pre_meeting_memo_html=None,
            words=[],
            created_at=datetime(2026, 10, 14, tzinfo=timezone.utc),
        )
    )

    found = await chat_store.list_sessions(SessionFilter(type="search", user_id="user-1", query="BETA"))
    assert [r.id for r in found] == ["session-1"]

    everyone = await chat_store.list_sessions(SessionFilter(type="search", user_id="", query=""))
    assert [r.id for r in everyone] == ["session-2", "session-1"]

    ranged = await chat_store.list_sessions(
        SessionFilter(
            type="dateRange",
            user_id="user-1",
            start=datetime(2026, 10, 13, tzinfo=timezone.utc),
            end=datetime(2026, 10, 31, tzinfo=timezone.utc),
        )
    )
    assert [r.id for r in ranged] == ["session-2"]

    limited = await chat_store.list_sessions(SessionFilter(type="search", user_id="user-1", limit=1))
    assert len(limited) == 1


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(chat_store):
    for session_id, title in (("s-pct", "Hit 100% of goals"), ("s-plain", "Hit 100 of goals"), ("s-under", "q3_plan")):
        await chat_store.upsert_session(
            SessionRecord(
                id=session_id,
                user_id="user-1",
                title=title,
                raw_memo_html="",
                enhanced_memo_html=None,
                pre_meeting_memo_html=None,
                words=[],
                created_at=datetime(2026, 10, 14, tzinfo=timezone.utc),
            )
        )

    percent = await chat_store.list_sessions(SessionFilter(type="search", user_id="user-1", query="100%"))
    underscore = await chat_store.list_sessions(SessionFilter(type="search", user_id="user-1", query="q3_"))
    wildcard_only = await chat_store.list_sessions(SessionFilter(type="search", user_id="user-1", query="_"))

    assert [r.id for r in percent] == ["s-pct"]
    assert [r.id for r in underscore] == ["s-under"]
    assert [r.id for r in wildcard_only] == ["s-under"]


@pytest.mark.asyncio
async def test_relative_paths_gain_db_suffix(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = SQLiteChatStore("data/chat")
    await store.init()

    db_path = Path(store.db_path)
    assert db_path.is_absolute()
    assert db_path.name == "chat.db"
    assert db_path.exists()
