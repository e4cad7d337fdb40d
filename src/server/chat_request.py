# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from typing import Optional

from pydantic import BaseModel, Field

from src.chat.models import Mention, SelectionData


class MentionPayload(BaseModel):
    id: str = Field(..., description="The id of the mentioned note or person")
    type: str = Field(..., description="The mention type, note or human")
    label: str = Field("", description="The label shown for the mention")

    def to_mention(self) -> Mention:
        return Mention(id=self.id, type=self.type, label=self.label)


class SelectionPayload(BaseModel):
    text: str = Field(..., description="The selected text")
    start_offset: int = Field(0, alias="startOffset", description="Start of the selection")
    end_offset: int = Field(0, alias="endOffset", description="End of the selection")
    session_id: Optional[str] = Field(None, alias="sessionId", description="The note holding the selection")
    timestamp: Optional[int] = Field(None, description="When the selection was made")

    model_config = {"populate_by_name": True}

    def to_selection(self) -> SelectionData:
        return SelectionData(
            text=self.text,
            start_offset=self.start_offset,
            end_offset=self.end_offset,
            session_id=self.session_id,
            timestamp=self.timestamp,
        )


class ChatRequest(BaseModel):
    session_id: str = Field(..., description="The note/meeting session the chat belongs to")
    user_id: str = Field(..., description="The user sending the message")
    conversation_id: Optional[str] = Field(
        None, description="The conversation to continue; the most recent one is used when omitted"
    )
    content: str = Field(..., description="The user's message")
    mentioned_content: list[MentionPayload] = Field(
        default_factory=list, description="Notes and people referenced in the message"
    )
    selection_data: Optional[SelectionPayload] = Field(None, description="Text selected in the note")
    html_content: Optional[str] = Field(None, description="The message as rich text")
    license_valid: bool = Field(False, description="Whether the user holds a valid license")
