# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from dataclasses import dataclass, field
from typing import Optional

from .models import Mention, SelectionData, SessionSnapshot


@dataclass(slots=True)
class ChatTransportOptions:
    """Per-turn context the caller hands to the generation transport."""

    session_id: Optional[str] = None
    user_id: Optional[str] = None
    session_data: Optional[SessionSnapshot] = None
    selection_data: Optional[SelectionData] = None
    mentioned_content: list[Mention] = field(default_factory=list)
    license_valid: bool = False
