# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Run one cancellable generation turn and expose it as a chunk stream."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from contextlib import aclosing, suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence

import anyio

from src.config.configuration import ChatSettings
from src.config.tools import load_tool_providers
from src.llms.llm import LLMConnection, create_chat_model, get_llm_connection
from src.tools.mcp import ToolProviderConnection, ToolProviderSpec
from src.tools.registry import ToolRegistryAssembler

from .chunks import MessageAccumulator, UIChunk, error_chunk, format_stream_error, start_chunk
from .context import ContextAssembler
from .errors import GenerationError
from .models import Message, SelectionData
from .options import ChatTransportOptions
from .store import ChatStore
from .streaming import LangChainModelStreamer, ModelRequest, ModelStreamer

logger = logging.getLogger(__name__)

OnFinish = Callable[[Message], Awaitable[None]]
StatusListener = Callable[["GenerationStatus"], None]
StreamerFactory = Callable[[LLMConnection], ModelStreamer]
ConnectionProvider = Callable[[], Awaitable[LLMConnection]]
ToolProviderSource = Callable[[], Awaitable[List[ToolProviderSpec]]]


class GenerationStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    READY = "ready"
    ERROR = "error"


@dataclass(slots=True)
class GenerationSession:
    """State owned by one `send_messages` call."""

    conversation_id: Optional[str]
    abort_signal: asyncio.Event
    open_tool_connections: List[ToolProviderConnection] = field(default_factory=list)

    async def teardown(self) -> None:
        """Close every open tool connection once, even while being cancelled."""
        with anyio.CancelScope(shield=True):
            while self.open_tool_connections:
                connection = self.open_tool_connections.pop(0)
                try:
                    await connection.aclose()
                except Exception as e:
                    logger.warning("Error closing tool connection %s: %s", getattr(connection, "name", "?"), e)


@dataclass(slots=True)
class _StreamFailure:
    error: Any


_DONE = object()
_ABORTED = object()


async def _default_connection() -> LLMConnection:
    return get_llm_connection()


class GenerationTransport:
    """Streams assistant replies for a conversation, one turn at a time.

    Status moves idle -> submitted -> streaming -> ready | error. Tool
    provider connections opened for a turn are closed exactly once when the
    turn ends, however it ends.
    """

    def __init__(
        self,
        store: ChatStore,
        options: Optional[ChatTransportOptions] = None,
        *,
        settings: Optional[ChatSettings] = None,
        tool_assembler: Optional[ToolRegistryAssembler] = None,
        context_assembler: Optional[ContextAssembler] = None,
        streamer_factory: Optional[StreamerFactory] = None,
        connection_provider: Optional[ConnectionProvider] = None,
        tool_providers: Optional[ToolProviderSource] = None,
    ) -> None:
        self._settings = settings or ChatSettings()
        self.options = options or ChatTransportOptions()
        self._tool_assembler = tool_assembler or ToolRegistryAssembler(store, self._settings)
        self._context = context_assembler or ContextAssembler(store, premium_host=self._settings.premium_host)
        self._streamer_factory = streamer_factory or self._default_streamer
        self._connection_provider = connection_provider or _default_connection
        self._tool_providers = tool_providers or self._configured_providers
        self._status = GenerationStatus.IDLE
        self._listeners: List[StatusListener] = []
        self._session: Optional[GenerationSession] = None
        self._last_session: Optional[GenerationSession] = None
        self._accumulator: Optional[MessageAccumulator] = None

    @property
    def status(self) -> GenerationStatus:
        return self._status

    @property
    def is_generating(self) -> bool:
        return self._status in (GenerationStatus.SUBMITTED, GenerationStatus.STREAMING)

    @property
    def current_message(self) -> Optional[Message]:
        """The assistant message being built by the running or last turn."""
        return self._accumulator.message if self._accumulator is not None else None

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def update_options(self, **changes: Any) -> ChatTransportOptions:
        self.options = dataclasses.replace(self.options, **changes)
        return self.options

    async def reconnect_to_stream(self, conversation_id: str) -> None:
        return None

    async def cleanup(self) -> None:
        session = self._session or self._last_session
        self._session = None
        self._last_session = None
        if session is not None:
            session.abort_signal.set()
            await session.teardown()
        self._accumulator = None
        self._set_status(GenerationStatus.IDLE)

    async def send_messages(
        self,
        conversation_id: Optional[str],
        messages: Sequence[Message],
        abort_signal: Optional[asyncio.Event] = None,
        on_finish: Optional[OnFinish] = None,
    ) -> AsyncIterator[UIChunk]:
        if self._session is not None:
            raise GenerationError("A generation is already running on this transport")

        abort_signal = abort_signal or asyncio.Event()
        session = GenerationSession(conversation_id=conversation_id, abort_signal=abort_signal)
        self._session = session
        self._last_session = session
        message_id = str(uuid.uuid4())
        accumulator = MessageAccumulator(message_id, conversation_id)
        self._accumulator = accumulator
        self._set_status(GenerationStatus.SUBMITTED)

        try:
            try:
                streamer, request = await self._prepare(session, messages)
            except Exception as e:
                logger.exception("Failed to start generation for conversation %s", conversation_id)
                self._set_status(GenerationStatus.ERROR)
                await session.teardown()
                raise GenerationError(str(e) or type(e).__name__) from e

            queue: asyncio.Queue = asyncio.Queue(maxsize=1)
            pump = asyncio.create_task(self._pump(streamer, request, abort_signal, queue))
            try:
                while True:
                    item = await self._next_item(queue, abort_signal)
                    if item is _ABORTED:
                        await self._stop_pump(pump)
                        await session.teardown()
                        self._set_status(GenerationStatus.READY)
                        logger.info("Generation for conversation %s aborted", conversation_id)
                        yield UIChunk("abort")
                        return
                    if isinstance(item, _StreamFailure):
                        self._set_status(GenerationStatus.ERROR)
                        await session.teardown()
                        yield error_chunk(format_stream_error(item.error))
                        return
                    if self._status != GenerationStatus.STREAMING:
                        self._set_status(GenerationStatus.STREAMING)
                        start = start_chunk(message_id)
                        accumulator.apply(start)
                        yield start
                    if item is _DONE:
                        break
                    accumulator.apply(item)
                    yield item
            finally:
                await self._stop_pump(pump)

            message = accumulator.finalize()
            await session.teardown()
            self._set_status(GenerationStatus.READY)
            if on_finish is not None:
                try:
                    await on_finish(message)
                except Exception:
                    logger.exception("on_finish callback failed for message %s", message.id)
            yield UIChunk("finish", {"messageId": message_id})
        finally:
            try:
                await session.teardown()
            finally:
                if self.is_generating:
                    self._set_status(GenerationStatus.READY)
                if self._session is session:
                    self._session = None

    async def _prepare(
        self, session: GenerationSession, messages: Sequence[Message]
    ) -> tuple[ModelStreamer, ModelRequest]:
        options = self._options_for(messages)
        connection = await self._connection_provider()
        providers = await self._tool_providers()
        tool_set = await self._tool_assembler.assemble(
            providers,
            license_valid=options.license_valid,
            connection=connection,
            selection_data=options.selection_data,
            session_id=options.session_id,
            user_id=options.user_id,
            connections=session.open_tool_connections,
        )
        prompt = await self._context.prepare(
            messages,
            options=options,
            connection=connection,
            tool_names=tool_set.registry.names(),
        )
        streamer = self._streamer_factory(connection)
        request = ModelRequest(
            messages=prompt.messages,
            tools=tool_set.registry,
            tool_choice="auto",
            max_steps=self._settings.max_steps,
        )
        return streamer, request

    def _options_for(self, messages: Sequence[Message]) -> ChatTransportOptions:
        if not messages:
            return self.options
        selection = messages[-1].metadata.get("selectionData")
        if isinstance(selection, dict):
            selection = SelectionData.from_dict(selection)
        if isinstance(selection, SelectionData):
            self.options = dataclasses.replace(self.options, selection_data=selection)
        return self.options

    @staticmethod
    async def _pump(
        streamer: ModelStreamer,
        request: ModelRequest,
        abort_signal: asyncio.Event,
        queue: asyncio.Queue,
    ) -> None:
        try:
            async with aclosing(streamer.stream(request, abort_signal)) as chunks:
                async for chunk in chunks:
                    await queue.put(chunk)
        except Exception as e:
            logger.exception("Model stream failed")
            await queue.put(_StreamFailure(e))
            return
        await queue.put(_DONE)

    @staticmethod
    async def _next_item(queue: asyncio.Queue, abort_signal: asyncio.Event) -> Any:
        if abort_signal.is_set():
            return _ABORTED
        getter = asyncio.ensure_future(queue.get())
        aborted = asyncio.ensure_future(abort_signal.wait())
        try:
            await asyncio.wait({getter, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            getter.cancel()
            aborted.cancel()
        if abort_signal.is_set():
            return _ABORTED
        return getter.result()

    @staticmethod
    async def _stop_pump(pump: asyncio.Task) -> None:
        if pump.done():
            return
        pump.cancel()
        with suppress(asyncio.CancelledError):
            await pump

    def _set_status(self, status: GenerationStatus) -> None:
        if status == self._status:
            return
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")

    def _default_streamer(self, connection: LLMConnection) -> ModelStreamer:
        return LangChainModelStreamer(
            create_chat_model(connection),
            smooth_delay_ms=self._settings.smooth_stream_delay_ms,
        )

    async def _configured_providers(self) -> List[ToolProviderSpec]:
        return load_tool_providers(self._settings.config_path)
