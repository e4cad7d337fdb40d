# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from pydantic import BaseModel, Field


class ConfigResponse(BaseModel):
    """Response model for server config."""

    connection_type: str = Field(..., description="The configured model connection type")
    model: str = Field(..., description="The model id used for chat")
    tools_enabled: bool = Field(..., description="Whether the model may call tools")
    max_steps: int = Field(..., description="Upper bound on model steps per turn")
