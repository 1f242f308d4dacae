"""Command line entry point for the agent dashboard server."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .config import load_config

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-dashboard",
        description="Agent dashboard - live attention queue and kanban board for coding-agent sessions",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the dashboard HTTP and websocket server")
    serve.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config YAML (default: ~/.agent_dashboard/config.yaml)",
    )
    serve.add_argument("--host", type=str, default=None, help="Bind address (overrides config)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (overrides config and PORT)")
    serve.add_argument(
        "--claude-home",
        type=Path,
        default=None,
        help="Claude home directory to watch (default: ~/.claude)",
    )
    serve.add_argument(
        "--no-summarizer",
        action="store_true",
        help="Disable the external title summarizer",
    )
    serve.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .server.api import create_app

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 2

    server = config.server
    if args.host:
        server = replace(server, host=args.host)
    if args.port:
        server = replace(server, port=args.port)
    config = replace(config, server=server)
    if args.claude_home:
        config = replace(config, claude_code=replace(config.claude_code, home=args.claude_home.expanduser()))
    if args.no_summarizer:
        config = replace(config, summarizer=replace(config.summarizer, enabled=False))

    logger.info("Serving agent dashboard on http://%s:%d", config.server.host, config.server.port)
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=args.log_level.lower(),
        access_log=False,
    )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, getattr(args, "log_level", "INFO")),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command is None:
        args = parse_args(["serve"])
    return serve(args)


if __name__ == "__main__":
    sys.exit(main())
