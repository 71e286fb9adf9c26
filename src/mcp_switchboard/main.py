"""mcp-switchboard command line entry point.

Loads configuration, imports the host objects whose tools, resources and
prompts should be exposed, and serves them over the selected transport.

Example:
    mcp-switchboard --transport http --port 8080 --host-object myapp.tools:Toolbox
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from mcp_switchboard import __version__
from mcp_switchboard.config import TRANSPORTS, ConfigError, ServerConfig, load_config
from mcp_switchboard.registry.loader import HostLoadError, load_host
from mcp_switchboard.server import MCPServer
from mcp_switchboard.transports.base import TransportError
from mcp_switchboard.transports.factory import create_transport

logger = logging.getLogger("mcp_switchboard")

_LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(name)s] %(levelname)s %(message)s"
_LOG_DATE_FORMAT = "%H:%M:%S"


def configure_logging(level: str = "info", log_file: str = "") -> None:
    """Send log records to stderr, or to ``log_file`` when given.

    stdout is reserved for the stdio protocol stream and never receives logs.
    """
    handler: logging.Handler
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-switchboard",
        description="Serve MCP tools, resources and prompts over stdio, HTTP, SSE or WebSocket",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to a YAML configuration file")
    parser.add_argument("--transport", "-t", choices=TRANSPORTS, help="Transport to serve on")
    parser.add_argument("--host", help="Interface to bind for socket transports")
    parser.add_argument("--port", "-p", type=int, help="Port to bind for socket transports")
    parser.add_argument(
        "--host-object",
        "-o",
        action="append",
        default=[],
        metavar="MODULE:ATTR",
        help="Object exposing @tool/@resource/@prompt members (repeatable)",
    )
    parser.add_argument(
        "--log-level", "-l", choices=["debug", "info", "warning", "error", "critical"]
    )
    parser.add_argument(
        "--version", "-v", action="version", version=f"mcp-switchboard {__version__}"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the MCP server.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config) if args.config else ServerConfig.from_dict()
        config = config.with_overrides(
            transport=args.transport, host=args.host, port=args.port, log_level=args.log_level
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(config.log_level, config.log_file)

    try:
        hosts = [load_host(reference) for reference in args.host_object]
    except HostLoadError as e:
        logger.error("%s", e)
        return 1

    try:
        server = MCPServer(config)
        for host in hosts:
            server.register(host)
        server.bind(create_transport(config.transport, config))
    except (OSError, TransportError) as e:
        logger.error("Error starting server: %s", e)
        return 1

    if not hosts:
        logger.warning("No host objects given; serving an empty tool list")

    try:
        server.serve()
    except TransportError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
