# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from dataclasses import dataclass
from typing import Optional

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from src.config.loader import get_str_env

DEFAULT_MODEL_ID = "gpt-4"

# Models known to handle tool calls reliably.
TOOL_CAPABLE_MODELS = frozenset(
    {
        "gpt-4.1",
        "openai/gpt-4.1",
        "anthropic/claude-sonnet-4",
        "openai/gpt-4o",
        "gpt-4o",
        "openai/gpt-5",
    }
)


@dataclass(slots=True)
class LLMConnection:
    """The model endpoint the user has configured."""

    type: str
    api_base: Optional[str] = None
    api_key: Optional[str] = None
    custom_model: Optional[str] = None

    @property
    def model_id(self) -> str:
        if self.type == "Custom" and self.custom_model:
            return self.custom_model
        return DEFAULT_MODEL_ID

    def points_at(self, host: str) -> bool:
        return bool(self.api_base and host and host in self.api_base)


def tools_enabled(connection: LLMConnection, premium_host: str) -> bool:
    """Return True when the active model may be given tools."""
    return connection.model_id in TOOL_CAPABLE_MODELS or connection.points_at(premium_host)


def get_llm_connection() -> LLMConnection:
    return LLMConnection(
        type=get_str_env("LLM_CONNECTION_TYPE", "HyprLocal"),
        api_base=get_str_env("LLM_API_BASE") or None,
        api_key=get_str_env("LLM_API_KEY") or None,
        custom_model=get_str_env("LLM_CUSTOM_MODEL") or None,
    )


def create_chat_model(connection: LLMConnection) -> BaseChatModel:
    kwargs = {
        "model": connection.model_id,
        "api_key": connection.api_key or "not-needed",
        "streaming": True,
    }
    if connection.api_base:
        kwargs["base_url"] = connection.api_base
    return ChatOpenAI(**kwargs)
