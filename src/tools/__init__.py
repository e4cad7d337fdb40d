# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from .builtin import build_builtin_tools
from .mcp import MCPProviderConnection, ProviderTool, ToolProviderSpec, connect_provider, load_mcp_tools
from .registry import ToolRegistry, ToolRegistryAssembler, ToolSet
from .types import ToolDescriptor

__all__ = [
    "MCPProviderConnection",
    "ProviderTool",
    "ToolDescriptor",
    "ToolProviderSpec",
    "ToolRegistry",
    "ToolRegistryAssembler",
    "ToolSet",
    "build_builtin_tools",
    "connect_provider",
    "load_mcp_tools",
]
