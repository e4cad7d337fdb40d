# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Conversational generation pipeline: context, tools, streaming and sync."""
