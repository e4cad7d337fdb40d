# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import json
import re
from typing import Any

_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(value: str) -> str:
    return _TAG_RE.sub("", value or "")


def brief(value: str, limit: int = 200) -> str:
    """Strip markup and cut to `limit` characters, marking the cut with `...`."""
    return strip_html(value)[:limit] + "..."


def is_blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() == ""


def to_json_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)
