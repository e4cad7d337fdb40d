# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import functools
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse

from src.chat.sync import ConversationSync
from src.chat.transport import GenerationStatus, GenerationTransport
from src.config.configuration import ChatSettings
from src.config.loader import get_bool_env, get_str_env
from src.llms.llm import get_llm_connection, tools_enabled
from src.server.chat_request import ChatRequest
from src.server.config_request import ConfigResponse
from src.server.conversation.router import get_chat_store
from src.server.conversation.router import router as conversation_router
from src.server.conversation.store import SQLiteChatStore
from src.server.mcp_request import MCPServerMetadataRequest, MCPServerMetadataResponse, MCPToolInfo
from src.tools.mcp import ToolProviderSpec, connect_provider, load_mcp_tools

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR_DETAIL = "Internal Server Error"

TransportFactory = Callable[[SQLiteChatStore], GenerationTransport]


@asynccontextmanager
async def lifespan(app: FastAPI):
    chat_store = getattr(app.state, "chat_store", None) or SQLiteChatStore(get_str_env("SESSION_DB_PATH", "chat.db"))
    await chat_store.init()
    app.state.chat_store = chat_store
    logger.info("Chat store ready at %s", chat_store.db_path)
    try:
        yield
    finally:
        await chat_store.close()


app = FastAPI(
    title="Chat API",
    description="API for streaming, tool-augmented chat over meeting notes",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins_str = get_str_env("ALLOWED_ORIGINS", "http://localhost:3000")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",")]

logger.info("Allowed origins: %s", allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(conversation_router)


@functools.lru_cache(maxsize=1)
def get_chat_settings() -> ChatSettings:
    return ChatSettings.from_env()


def get_transport_factory(settings: ChatSettings = Depends(get_chat_settings)) -> TransportFactory:
    def build(store: SQLiteChatStore) -> GenerationTransport:
        return GenerationTransport(store, settings=settings)

    return build


@app.post("/api/chat/stream")
async def chat_stream(
    request: ChatRequest,
    store: SQLiteChatStore = Depends(get_chat_store),
    transport_factory: TransportFactory = Depends(get_transport_factory),
):
    if await store.get_session(request.session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if request.conversation_id:
        conversation = await store.get_conversation(request.conversation_id)
        if conversation is None or conversation.session_id != request.session_id:
            raise HTTPException(status_code=404, detail="Conversation not found")
    if not request.content.strip():
        raise HTTPException(status_code=400, detail="content is required")

    errors: List[Exception] = []
    transport = transport_factory(store)
    transport.update_options(license_valid=request.license_valid)
    sync = ConversationSync(
        store,
        transport,
        session_id=request.session_id,
        user_id=request.user_id,
        on_error=errors.append,
    )
    if request.conversation_id:
        sync.select_conversation(request.conversation_id)
    else:
        await sync.refresh_conversations()
    await sync.refresh_messages()

    return StreamingResponse(
        _chat_event_stream(sync, request, errors),
        media_type="text/event-stream",
    )


@app.get("/api/chat/{conversation_id}/stream")
async def reconnect_chat_stream(
    conversation_id: str,
    store: SQLiteChatStore = Depends(get_chat_store),
    transport_factory: TransportFactory = Depends(get_transport_factory),
):
    """In-flight streams cannot be resumed; always answers 204."""
    transport = transport_factory(store)
    await transport.reconnect_to_stream(conversation_id)
    return Response(status_code=204)


async def _chat_event_stream(
    sync: ConversationSync,
    request: ChatRequest,
    errors: List[Exception],
) -> AsyncIterator[str]:
    finished = False
    failed = False
    try:
        async for chunk in sync.send_message(
            request.content,
            mentioned_content=[mention.to_mention() for mention in request.mentioned_content],
            selection_data=request.selection_data.to_selection() if request.selection_data else None,
            html_content=request.html_content,
            conversation_id=request.conversation_id,
        ):
            while errors:
                yield _make_event("error", {"errorText": str(errors.pop(0))})
            if chunk.type == "finish":
                finished = True
            yield _make_event(chunk.type, chunk.to_dict())
        while errors:
            yield _make_event("error", {"errorText": str(errors.pop(0))})
        failed = sync.transport.status == GenerationStatus.ERROR
    finally:
        await sync.transport.cleanup()

    conversation_id = sync.active_conversation_id
    if finished and conversation_id and not failed:
        yield _make_event("conversation", {"conversationId": conversation_id})


def _make_event(event_type: str, data: Dict[str, Any]) -> str:
    try:
        json_data = json.dumps(data, ensure_ascii=False)
        return f"event: {event_type}\ndata: {json_data}\n\n"
    except (TypeError, ValueError) as e:
        logger.error("Error serializing event data: %s", e)
        error_data = json.dumps({"errorText": "Serialization failed"}, ensure_ascii=False)
        return f"event: error\ndata: {error_data}\n\n"


@app.post("/api/mcp/server/metadata", response_model=MCPServerMetadataResponse)
async def mcp_server_metadata(request: MCPServerMetadataRequest):
    """Get information about an MCP server."""
    if not get_bool_env("ENABLE_MCP_SERVER_CONFIGURATION", False):
        raise HTTPException(
            status_code=403,
            detail="MCP server configuration is disabled. Set ENABLE_MCP_SERVER_CONFIGURATION=true to enable MCP features.",
        )

    timeout = request.timeout_seconds if request.timeout_seconds is not None else 300
    spec = ToolProviderSpec(
        url=request.url,
        header_key=request.header_key,
        header_value=request.header_value,
        transport=request.transport,
    )
    try:
        tools = await load_mcp_tools(
            spec, connector=functools.partial(connect_provider, timeout_seconds=timeout)
        )
    except Exception as e:
        logger.exception("Error in MCP server metadata endpoint: %s", e)
        raise HTTPException(status_code=500, detail=INTERNAL_SERVER_ERROR_DETAIL)

    return MCPServerMetadataResponse(
        transport=request.transport,
        url=request.url,
        tools=[
            MCPToolInfo(name=tool.name, description=tool.description, input_schema=tool.input_schema)
            for tool in tools
        ],
    )


@app.get("/api/config", response_model=ConfigResponse)
async def config(settings: ChatSettings = Depends(get_chat_settings)):
    """Get the config of the server."""
    connection = get_llm_connection()
    return ConfigResponse(
        connection_type=connection.type,
        model=connection.model_id,
        tools_enabled=tools_enabled(connection, settings.premium_host),
        max_steps=settings.max_steps,
    )
