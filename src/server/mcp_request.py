# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class MCPServerMetadataRequest(BaseModel):
    """Request model for MCP server metadata."""

    transport: Literal["sse", "streamable_http"] = Field(
        "sse", description="The type of MCP server connection"
    )
    url: str = Field(..., description="The URL of the MCP server")
    header_key: Optional[str] = Field(None, description="Name of the authentication header")
    header_value: Optional[str] = Field(None, description="Value of the authentication header")
    timeout_seconds: Optional[int] = Field(None, description="Optional custom timeout in seconds")


class MCPToolInfo(BaseModel):
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)


class MCPServerMetadataResponse(BaseModel):
    """Response model for MCP server metadata."""

    transport: str = Field(..., description="The type of MCP server connection")
    url: str = Field(..., description="The URL of the MCP server")
    tools: List[MCPToolInfo] = Field(default_factory=list, description="Available tools from the MCP server")
