# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import argparse
import logging

import uvicorn

from src.config.loader import get_int_env, get_str_env


def main() -> None:
    parser = argparse.ArgumentParser(prog="notes-chat", description="Run the notes chat API server")
    parser.add_argument("--host", default=None, help="bind host (default: $HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="bind port (default: $PORT or 8000)")
    parser.add_argument("--reload", action="store_true", help="reload on code changes")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="log level for the chat pipeline and the server",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    host = args.host or get_str_env("HOST", "127.0.0.1")
    port = args.port or get_int_env("PORT", 8000)
    uvicorn.run("src.server.app:app", host=host, port=port, reload=args.reload, log_level=args.log_level)


if __name__ == "__main__":
    main()
