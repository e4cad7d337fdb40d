# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT


class ChatError(Exception):
    """Base class for failures scoped to one generation turn or one fetch."""


class ProviderConnectionError(ChatError):
    """A tool provider could not be connected to or listed."""


class ToolExecutionError(ChatError):
    """A tool reported an error result."""


class PersistenceWriteError(ChatError):
    """A write to the conversation store failed."""


class GenerationError(ChatError):
    """The transport failed before or outside the model stream."""
