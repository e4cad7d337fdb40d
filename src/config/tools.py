# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import logging
from typing import Any, Dict, List

from src.tools.mcp import ToolProviderSpec

from .loader import load_yaml_config

logger = logging.getLogger(__name__)

_TRANSPORTS = {"sse", "streamable_http"}


def _provider_from_entry(entry: Dict[str, Any]) -> ToolProviderSpec:
    transport = entry.get("transport", "sse")
    if transport not in _TRANSPORTS:
        raise ValueError(f"Unsupported MCP transport: {transport}")
    return ToolProviderSpec(
        url=str(entry["url"]),
        header_key=entry.get("header_key") or None,
        header_value=entry.get("header_value") or None,
        enabled=bool(entry.get("enabled", True)),
        transport=transport,
        name=entry.get("name"),
    )


def load_tool_providers(path: str) -> List[ToolProviderSpec]:
    """Read the `MCP_SERVERS` list of a YAML config into provider specs.

    Malformed entries are logged and skipped.
    """
    config = load_yaml_config(path)
    entries = config.get("MCP_SERVERS") or []
    if not isinstance(entries, list):
        logger.warning("MCP_SERVERS in %s is not a list; ignoring it", path)
        return []

    providers: List[ToolProviderSpec] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning("Skipping MCP server #%d in %s: not a mapping", index, path)
            continue
        try:
            providers.append(_provider_from_entry(entry))
        except (KeyError, ValueError) as e:
            logger.warning("Skipping MCP server #%d in %s: %s", index, path, e)
    return providers
