# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from pathlib import Path
from typing import Any, Mapping

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

TEMPLATE_NAMES = ("chat.system", "chat.user")

env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent)),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
)


def render(template_name: str, variables: Mapping[str, Any]) -> str:
    """Render one of the chat prompt templates.

    Args:
        template_name: Template name such as ``chat.system``.
        variables: Values exposed to the template.

    Returns:
        The rendered prompt text.
    """
    if template_name not in TEMPLATE_NAMES:
        raise ValueError(f"Unknown prompt template: {template_name}")
    try:
        template = env.get_template(f"{template_name}.jinja")
    except TemplateNotFound as e:
        raise ValueError(f"Prompt template file missing for {template_name}") from e
    return template.render(**dict(variables)).strip()
