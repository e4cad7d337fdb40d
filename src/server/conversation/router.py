from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.chat.models import Conversation, ConversationSummary, Message, part_from_dict
from src.chat.sync import summarize_conversations

from .schemas import (
    ConversationCreateRequest,
    ConversationListResponse,
    ConversationSchema,
    ConversationSummarySchema,
    ConversationUpdateRequest,
    MessageListResponse,
    MessagePartsUpdateRequest,
    MessageSchema,
)
from .store import SQLiteChatStore

router = APIRouter(prefix="/api", tags=["conversations"])


def get_chat_store(request: Request) -> SQLiteChatStore:
    """The store opened by the application lifespan."""
    store = getattr(request.app.state, "chat_store", None)
    if store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Chat store is not ready")
    return store


@router.get("/sessions/{session_id}/conversations", response_model=ConversationListResponse)
async def list_conversations(
    session_id: str,
    store: SQLiteChatStore = Depends(get_chat_store),
) -> ConversationListResponse:
    conversations = await store.list_conversations(session_id)
    summaries = await summarize_conversations(store, conversations)
    return ConversationListResponse(conversations=[_to_summary(summary) for summary in summaries])


@router.post(
    "/sessions/{session_id}/conversations",
    status_code=status.HTTP_201_CREATED,
    response_model=ConversationSchema,
)
async def create_conversation(
    session_id: str,
    payload: ConversationCreateRequest,
    store: SQLiteChatStore = Depends(get_chat_store),
) -> ConversationSchema:
    if await store.get_session(session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    conversation = await store.create_conversation(
        session_id=session_id, user_id=payload.user_id, name=payload.name
    )
    return _to_conversation(conversation)


@router.patch("/conversations/{conversation_id}", response_model=ConversationSchema)
async def rename_conversation(
    conversation_id: str,
    payload: ConversationUpdateRequest,
    store: SQLiteChatStore = Depends(get_chat_store),
) -> ConversationSchema:
    if await store.get_conversation(conversation_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    await store.rename_conversation(conversation_id, payload.name)
    conversation = await store.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return _to_conversation(conversation)


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
    conversation_id: str,
    store: SQLiteChatStore = Depends(get_chat_store),
) -> MessageListResponse:
    if await store.get_conversation(conversation_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    messages = await store.list_messages(conversation_id)
    return MessageListResponse(messages=[to_message_schema(message) for message in messages])


@router.patch("/messages/{message_id}/parts", response_model=MessageSchema)
async def update_message_parts(
    message_id: str,
    payload: MessagePartsUpdateRequest,
    store: SQLiteChatStore = Depends(get_chat_store),
) -> MessageSchema:
    if await store.get_message(message_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    await store.update_message_parts(message_id, [part_from_dict(part) for part in payload.parts])
    message = await store.get_message(message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return to_message_schema(message)


def _to_conversation(conversation: Conversation) -> ConversationSchema:
    return ConversationSchema(
        id=conversation.id,
        session_id=conversation.session_id,
        user_id=conversation.user_id,
        name=conversation.name,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def _to_summary(summary: ConversationSummary) -> ConversationSummarySchema:
    return ConversationSummarySchema(
        **_to_conversation(summary.conversation).model_dump(),
        first_message=summary.first_message,
        most_recent_timestamp=summary.most_recent_timestamp,
    )


def to_message_schema(message: Message) -> MessageSchema:
    return MessageSchema(
        id=message.id,
        conversation_id=message.conversation_id or "",
        role=message.role,
        parts=[part.to_dict() for part in message.parts],
        metadata=message.metadata,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )
