from datetime import datetime, timezone

import pytest

from src.chat.errors import ToolExecutionError
from src.chat.models import SelectionData, SessionRecord
from src.tools.builtin import build_builtin_tools


def _tools(store, **kwargs):
    return {tool.name: tool for tool in build_builtin_tools(store, user_id="user-1", **kwargs)}


async def _add_session(store, session_id, *, user_id="user-1", title="", enhanced=None, created_at=None):
    await store.upsert_session(
        SessionRecord(
            id=session_id,
            user_id=user_id,
            title=title,
            raw_memo_html="<p>raw</p>",
            enhanced_memo_html=enhanced,
            pre_meeting_memo_html=None,
            words=[],
            created_at=created_at or datetime(2026, 9, 1, tzinfo=timezone.utc),
        )
    )


def _selection(text="beta", start=12, end=16, session_id="session-1"):
    return SelectionData(text=text, start_offset=start, end_offset=end, session_id=session_id)


def test_edit_tool_listed_first_only_with_selection(chat_store):
    assert list(_tools(chat_store)) == ["search_sessions_date_range", "search_sessions_multi_keywords"]
    assert list(_tools(chat_store, selection_data=_selection()))[0] == "edit_enhanced_note"


@pytest.mark.asyncio
async def test_edit_enhanced_note_proposes_replacement(chat_store):
    tool = _tools(chat_store, selection_data=_selection())["edit_enhanced_note"]

    proposal = await tool.executor({"newText": "GA"})

    assert proposal == {
        "sessionId": "session-1",
        "originalText": "beta",
        "newText": "GA",
        "startOffset": 12,
        "endOffset": 16,
        "updatedContent": "<p>Ship the GA on Friday</p>",
    }
    record = await chat_store.get_session("session-1")
    assert record.enhanced_memo_html == "<p>Ship the beta on Friday</p>"


@pytest.mark.asyncio
async def test_edit_enhanced_note_relocates_stale_offsets(chat_store):
    tool = _tools(chat_store, selection_data=_selection(start=0, end=4))["edit_enhanced_note"]

    proposal = await tool.executor({"newText": "release"})

    assert (proposal["startOffset"], proposal["endOffset"]) == (12, 16)
    assert proposal["updatedContent"] == "<p>Ship the release on Friday</p>"


@pytest.mark.asyncio
async def test_edit_enhanced_note_rejects_missing_text(chat_store):
    tool = _tools(chat_store, selection_data=_selection(text="launch"))["edit_enhanced_note"]

    with pytest.raises(ToolExecutionError, match="no longer in the note"):
        await tool.executor({"newText": "GA"})
    with pytest.raises(ToolExecutionError, match="newText"):
        await tool.executor({})


@pytest.mark.asyncio
async def test_edit_enhanced_note_falls_back_to_current_session(chat_store):
    tools = _tools(chat_store, selection_data=_selection(session_id=None), session_id="session-1")

    proposal = await tools["edit_enhanced_note"].executor({"newText": "GA"})

    assert proposal["sessionId"] == "session-1"


@pytest.mark.asyncio
async def test_search_date_range_filters_by_owner_and_dates(chat_store):
    await _add_session(chat_store, "session-old", title="Kickoff")
    await _add_session(
        chat_store, "session-other", user_id="user-2", created_at=datetime(2026, 10, 13, tzinfo=timezone.utc)
    )
    tool = _tools(chat_store)["search_sessions_date_range"]

    results = await tool.executor({"startDate": "2026-10-01", "endDate": "2026-10-31T23:59:59Z"})

    assert [result["id"] for result in results] == ["session-1"]
    assert results[0]["title"] == "Weekly sync"
    assert results[0]["createdAt"] == "2026-10-12T09:00:00+00:00"
    assert results[0]["excerpt"].startswith("Ship the beta on Friday")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "arguments, message",
    [
        ({"endDate": "2026-10-31"}, "startDate is required"),
        ({"startDate": "yesterday", "endDate": "2026-10-31"}, "not an ISO date"),
        ({"startDate": "2026-10-31", "endDate": "2026-10-01"}, "must not be before"),
    ],
)
async def test_search_date_range_rejects_bad_input(chat_store, arguments, message):
    tool = _tools(chat_store)["search_sessions_date_range"]
    with pytest.raises(ToolExecutionError, match=message):
        await tool.executor(arguments)


@pytest.mark.asyncio
async def test_search_multi_keywords_merges_without_duplicates(chat_store):
    await _add_session(chat_store, "session-retro", enhanced="<p>Beta retro notes</p>")
    tool = _tools(chat_store)["search_sessions_multi_keywords"]

    results = await tool.executor({"keywords": ["beta", "sync", "  "]})

    assert sorted(result["id"] for result in results) == ["session-1", "session-retro"]
    untitled = next(result for result in results if result["id"] == "session-retro")
    assert untitled["title"] == "Untitled"


@pytest.mark.asyncio
async def test_search_multi_keywords_without_matches(chat_store):
    tool = _tools(chat_store)["search_sessions_multi_keywords"]
    assert await tool.executor({"keywords": ["nonexistent"]}) == []
