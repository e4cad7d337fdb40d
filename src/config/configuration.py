# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from dataclasses import dataclass
from enum import Enum

from .loader import get_int_env, get_str_env


class ToolCollisionPolicy(str, Enum):
    """How the tool registry resolves two tools registered under one name."""

    LAST_WRITE_WINS = "last"
    FIRST_WRITE_WINS = "first"


@dataclass(kw_only=True)
class ChatSettings:
    """Settings for one chat generation pipeline."""

    max_steps: int = 10
    premium_host: str = "pro.hyprnote.com"
    premium_mcp_url: str = "https://pro.hyprnote.com/mcp"
    premium_license_header: str = "x-hyprnote-license-key"
    tool_collision_policy: ToolCollisionPolicy = ToolCollisionPolicy.LAST_WRITE_WINS
    smooth_stream_delay_ms: int = 70
    mcp_timeout_seconds: int = 30
    config_path: str = "conf.yaml"

    @classmethod
    def from_env(cls) -> "ChatSettings":
        policy = get_str_env("TOOL_COLLISION_POLICY", ToolCollisionPolicy.LAST_WRITE_WINS.value)
        try:
            collision_policy = ToolCollisionPolicy(policy.lower())
        except ValueError:
            collision_policy = ToolCollisionPolicy.LAST_WRITE_WINS
        return cls(
            max_steps=max(1, get_int_env("CHAT_MAX_STEPS", 10)),
            premium_host=get_str_env("PREMIUM_API_HOST", "pro.hyprnote.com"),
            premium_mcp_url=get_str_env("PREMIUM_MCP_URL", "https://pro.hyprnote.com/mcp"),
            premium_license_header=get_str_env("PREMIUM_LICENSE_HEADER", "x-hyprnote-license-key"),
            tool_collision_policy=collision_policy,
            smooth_stream_delay_ms=get_int_env("SMOOTH_STREAM_DELAY_MS", 70),
            mcp_timeout_seconds=get_int_env("MCP_TIMEOUT_SECONDS", 30),
            config_path=get_str_env("CHAT_CONFIG_PATH", "conf.yaml"),
        )
