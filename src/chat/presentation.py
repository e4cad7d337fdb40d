# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Derive the "thinking" indicator from generation status without flicker."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Sequence

from .models import TERMINAL_TOOL_STATES, Message, TextPart, ToolCallPart

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.2


def should_show_thinking(
    submitted: bool,
    streaming: bool,
    ready: bool,
    error: bool,
    messages: Sequence[Message],
) -> bool:
    if submitted:
        return True

    if streaming and messages:
        last = messages[-1]
        if last.role == "assistant" and last.parts:
            part = last.parts[-1]
            if isinstance(part, TextPart) and part.state in (None, "done"):
                return True
            if isinstance(part, ToolCallPart) and part.state in TERMINAL_TOOL_STATES:
                return True

    return not (ready or streaming or error)


class ThinkingIndicator:
    """Shows "thinking" only after the condition has held for the debounce delay.

    Hiding is immediate. At most one pending timer exists at a time.
    """

    def __init__(
        self,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_change: Optional[Callable[[bool], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.visible = False
        self._debounce_seconds = debounce_seconds
        self._on_change = on_change
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None

    def update(
        self,
        *,
        submitted: bool,
        streaming: bool,
        ready: bool,
        error: bool,
        messages: Sequence[Message],
    ) -> None:
        self._cancel_timer()
        if should_show_thinking(submitted, streaming, ready, error, messages):
            if not self.visible:
                loop = self._loop or asyncio.get_running_loop()
                self._timer = loop.call_later(self._debounce_seconds, self._show)
        else:
            self._set_visible(False)

    def close(self) -> None:
        self._cancel_timer()

    def _show(self) -> None:
        self._timer = None
        self._set_visible(True)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_visible(self, visible: bool) -> None:
        if visible == self.visible:
            return
        self.visible = visible
        logger.debug("Thinking indicator %s", "shown" if visible else "hidden")
        if self._on_change is not None:
            self._on_change(visible)
