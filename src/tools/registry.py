# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Assemble the tools one generation turn may call."""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from src.chat.models import SelectionData
from src.chat.store import ChatStore
from src.config.configuration import ChatSettings, ToolCollisionPolicy
from src.config.loader import get_str_env
from src.llms.llm import LLMConnection, tools_enabled

from .builtin import build_builtin_tools
from .mcp import ProviderConnector, ProviderTool, ToolProviderConnection, ToolProviderSpec, connect_provider
from .types import ToolDescriptor, ToolExecutor

logger = logging.getLogger(__name__)

LicenseKeyProvider = Callable[[], Awaitable[Optional[str]]]


class ToolRegistry:
    """Name-to-descriptor lookup with an explicit collision policy."""

    def __init__(self, policy: ToolCollisionPolicy = ToolCollisionPolicy.LAST_WRITE_WINS) -> None:
        self.policy = policy
        self._tools: Dict[str, ToolDescriptor] = {}
        self._sources: Dict[str, str] = {}

    def register(self, descriptor: ToolDescriptor, *, source: str) -> bool:
        """Register `descriptor`; returns False when the policy kept an earlier tool."""
        existing_source = self._sources.get(descriptor.name)
        if existing_source is not None:
            if self.policy == ToolCollisionPolicy.FIRST_WRITE_WINS:
                logger.warning(
                    "Tool %s from %s ignored; already registered by %s",
                    descriptor.name,
                    source,
                    existing_source,
                )
                return False
            logger.warning(
                "Tool %s from %s replaces the one registered by %s",
                descriptor.name,
                source,
                existing_source,
            )
        self._tools[descriptor.name] = descriptor
        self._sources[descriptor.name] = source
        return True

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def descriptors(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)


@dataclass(slots=True)
class ToolSet:
    """Tools for one turn plus the provider connections backing them.

    The caller owns `connections` and must close them when the turn ends.
    """

    registry: ToolRegistry
    connections: List[ToolProviderConnection] = field(default_factory=list)


async def env_license_key() -> Optional[str]:
    return get_str_env("LICENSE_KEY") or None


def _provider_executor(connection: ToolProviderConnection, tool_name: str) -> ToolExecutor:
    async def execute(arguments: Dict[str, Any]) -> Any:
        return await connection.call_tool(tool_name, arguments)

    return execute


class ToolRegistryAssembler:
    def __init__(
        self,
        store: ChatStore,
        settings: Optional[ChatSettings] = None,
        *,
        connector: Optional[ProviderConnector] = None,
        license_key_provider: LicenseKeyProvider = env_license_key,
    ) -> None:
        self._store = store
        self._settings = settings or ChatSettings()
        self._connector = connector or functools.partial(
            connect_provider, timeout_seconds=self._settings.mcp_timeout_seconds
        )
        self._license_key_provider = license_key_provider

    async def assemble(
        self,
        providers: Sequence[ToolProviderSpec],
        *,
        license_valid: bool,
        connection: LLMConnection,
        selection_data: Optional[SelectionData] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        connections: Optional[List[ToolProviderConnection]] = None,
    ) -> ToolSet:
        """Build the registry for one turn.

        Provider connections are appended to `connections` as soon as they
        open, so a caller that is cancelled mid-assembly can still close them.
        """
        registry = ToolRegistry(self._settings.tool_collision_policy)
        tool_set = ToolSet(registry=registry, connections=connections if connections is not None else [])
        if not tools_enabled(connection, self._settings.premium_host):
            logger.debug("Tools disabled for model %s", connection.model_id)
            return tool_set

        loaders = []
        if connection.points_at(self._settings.premium_host) and license_valid:
            loaders.append(self._load_premium(tool_set.connections))
        loaders.extend(self._load_provider(spec, tool_set.connections) for spec in providers if spec.enabled)

        results = await asyncio.gather(*loaders)
        for result in results:
            if result is None:
                continue
            provider_connection, tools = result
            for tool in tools:
                registry.register(
                    ToolDescriptor(
                        name=tool.name,
                        description=tool.description,
                        input_schema=tool.input_schema,
                        executor=_provider_executor(provider_connection, tool.name),
                    ),
                    source=provider_connection.name,
                )

        for descriptor in build_builtin_tools(
            self._store,
            user_id=user_id,
            session_id=session_id,
            selection_data=selection_data,
        ):
            registry.register(descriptor, source="builtin")

        logger.info(
            "Assembled %d tools from %d provider connections",
            len(registry),
            len(tool_set.connections),
        )
        return tool_set

    async def _load_premium(
        self, opened: List[ToolProviderConnection]
    ) -> Optional[Tuple[ToolProviderConnection, List[ProviderTool]]]:
        try:
            license_key = await self._license_key_provider()
        except Exception as e:  # noqa: BLE001 - premium tools are optional
            logger.error("Failed to read license key for premium tools: %s", e)
            return None
        spec = ToolProviderSpec(
            url=self._settings.premium_mcp_url,
            header_key=self._settings.premium_license_header,
            header_value=license_key or "",
            transport="streamable_http",
            name="premium",
        )
        return await self._load_provider(spec, opened)

    async def _load_provider(
        self, spec: ToolProviderSpec, opened: List[ToolProviderConnection]
    ) -> Optional[Tuple[ToolProviderConnection, List[ProviderTool]]]:
        try:
            provider_connection = await self._connector(spec)
        except Exception as e:  # noqa: BLE001 - one provider must not abort assembly
            logger.error("Error creating MCP client for %s: %s", spec.label, e)
            return None
        opened.append(provider_connection)
        try:
            tools = await provider_connection.list_tools()
        except Exception as e:  # noqa: BLE001
            logger.error("Error listing tools from %s: %s", spec.label, e)
            opened.remove(provider_connection)
            await provider_connection.aclose()
            return None
        return provider_connection, tools
