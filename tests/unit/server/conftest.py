import asyncio
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from src.chat.models import SessionRecord
from src.server.conversation.store import SQLiteChatStore


@pytest.fixture
def api_store(tmp_path):
    db_path = tmp_path / "chat_api.db"
    store = SQLiteChatStore(str(db_path))
    asyncio.run(store.init())
    asyncio.run(
        store.upsert_session(
            SessionRecord(
                id="session-1",
                user_id="user-1",
                title="Weekly sync",
                raw_memo_html="<p>raw notes</p>",
                enhanced_memo_html="<p>Ship the beta on Friday</p>",
                pre_meeting_memo_html=None,
                words=[],
                created_at=datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc),
            )
        )
    )
    from src.server.app import app

    app.state.chat_store = store
    yield store
    app.state.chat_store = None


@pytest.fixture
def client(api_store):
    from src.server.app import app

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
