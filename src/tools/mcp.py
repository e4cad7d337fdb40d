# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Connections to remote MCP tool providers."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Literal, Optional, Protocol

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from src.chat.errors import ProviderConnectionError, ToolExecutionError

logger = logging.getLogger(__name__)

TransportType = Literal["sse", "streamable_http"]


@dataclass(slots=True)
class ToolProviderSpec:
    """Where a tool provider lives and how to authenticate against it."""

    url: str
    header_key: Optional[str] = None
    header_value: Optional[str] = None
    enabled: bool = True
    transport: TransportType = "sse"
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.url

    @property
    def headers(self) -> Dict[str, str]:
        if self.header_key and self.header_value is not None:
            return {self.header_key: self.header_value}
        return {}


@dataclass(slots=True)
class ProviderTool:
    name: str
    description: str
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolProviderConnection(Protocol):
    name: str

    async def list_tools(self) -> List[ProviderTool]: ...

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any: ...

    async def aclose(self) -> None: ...


ProviderConnector = Callable[[ToolProviderSpec], Awaitable[ToolProviderConnection]]


class MCPProviderConnection:
    """An open MCP client session.

    The transport and session context managers are entered and exited by a
    dedicated task, so the connection can be closed from any task.
    """

    def __init__(self, spec: ToolProviderSpec, timeout_seconds: float = 30) -> None:
        self.spec = spec
        self.name = spec.label
        self._timeout_seconds = timeout_seconds
        self._session: Optional[ClientSession] = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._session is not None and not self._closing.is_set()

    async def open(self) -> "MCPProviderConnection":
        self._task = asyncio.create_task(self._run(), name=f"mcp:{self.name}")
        ready_waiter = asyncio.ensure_future(self._ready.wait())
        try:
            done, _ = await asyncio.wait(
                {self._task, ready_waiter},
                timeout=self._timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready_waiter.cancel()

        if self._ready.is_set():
            return self

        if self._task in done:
            exc = self._task.exception()
            raise ProviderConnectionError(f"Failed to connect to {self.name}: {exc}") from exc

        self._task.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await self._task
        self._task = None
        raise ProviderConnectionError(f"Timed out connecting to {self.name}")

    async def list_tools(self) -> List[ProviderTool]:
        session = self._require_session()
        result = await session.list_tools()
        tools: List[ProviderTool] = []
        for tool in result.tools:
            tools.append(
                ProviderTool(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=tool.inputSchema or {"type": "object", "properties": {}},
                )
            )
        return tools

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        session = self._require_session()
        result = await session.call_tool(tool_name, arguments or {})
        text = "\n".join(
            getattr(item, "text", "") for item in result.content if getattr(item, "type", None) == "text"
        )
        if result.isError:
            raise ToolExecutionError(text or f"Tool {tool_name} failed")
        structured = getattr(result, "structuredContent", None)
        return structured if structured is not None else text

    async def aclose(self) -> None:
        self._closing.set()
        task = self._task
        if task is None:
            return
        self._task = None
        try:
            await task
        except Exception as exc:  # noqa: BLE001 - closing must not fail the turn
            logger.debug("MCP connection %s closed with error: %s", self.name, exc)
        finally:
            self._session = None
            logger.debug("MCP connection %s closed", self.name)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ProviderConnectionError(f"Connection to {self.name} is not open")
        return self._session

    async def _run(self) -> None:
        async with self._open_streams() as (read_stream, write_stream):
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                self._session = session
                self._ready.set()
                await self._closing.wait()

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[tuple]:
        headers = self.spec.headers or None
        if self.spec.transport == "streamable_http":
            async with streamablehttp_client(
                url=self.spec.url,
                headers=headers,
                timeout=timedelta(seconds=self._timeout_seconds),
            ) as (read_stream, write_stream, _):
                yield read_stream, write_stream
        else:
            async with sse_client(
                url=self.spec.url,
                headers=headers,
                timeout=float(self._timeout_seconds),
            ) as (read_stream, write_stream):
                yield read_stream, write_stream


async def connect_provider(spec: ToolProviderSpec, timeout_seconds: float = 30) -> MCPProviderConnection:
    connection = MCPProviderConnection(spec, timeout_seconds=timeout_seconds)
    return await connection.open()


async def load_mcp_tools(
    spec: ToolProviderSpec,
    connector: Optional[ProviderConnector] = None,
) -> List[ProviderTool]:
    """Connect to one provider, list its tools and disconnect."""
    connection = await (connector or connect_provider)(spec)
    try:
        return await connection.list_tools()
    finally:
        await connection.aclose()
