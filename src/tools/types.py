# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

ToolExecutor = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass(slots=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: Dict[str, Any]
    executor: ToolExecutor

    def to_openai_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }
