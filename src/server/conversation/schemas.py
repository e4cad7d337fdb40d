from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

_MAX_NAME_LENGTH = 40


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        return None
    if len(value) > _MAX_NAME_LENGTH:
        raise ValueError(f"Name must be {_MAX_NAME_LENGTH} characters or fewer")
    return value


class ConversationSchema(BaseModel):
    id: str
    session_id: str
    user_id: str
    name: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConversationSummarySchema(ConversationSchema):
    first_message: str = ""
    most_recent_timestamp: datetime


class ConversationListResponse(BaseModel):
    conversations: list[ConversationSummarySchema]


class ConversationCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, description="Optional conversation name.")

    @field_validator("name")
    @classmethod
    def validate_name_length(cls, value: Optional[str]) -> Optional[str]:
        return _clean_name(value)


class ConversationUpdateRequest(BaseModel):
    name: str = Field(description="New conversation name.")

    @field_validator("name")
    @classmethod
    def validate_name_length(cls, value: str) -> str:
        cleaned = _clean_name(value)
        if cleaned is None:
            raise ValueError("Name must not be blank")
        return cleaned


class MessageSchema(BaseModel):
    id: str
    conversation_id: str
    role: str
    parts: list[dict[str, Any]]
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessageListResponse(BaseModel):
    messages: list[MessageSchema]


class MessagePartsUpdateRequest(BaseModel):
    parts: list[dict[str, Any]]

    @field_validator("parts")
    @classmethod
    def validate_part_types(cls, value: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for part in value:
            if not isinstance(part.get("type"), str):
                raise ValueError("Every part needs a string type")
        return value
