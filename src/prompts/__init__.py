# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from .template import TEMPLATE_NAMES, render

__all__ = ["TEMPLATE_NAMES", "render"]
