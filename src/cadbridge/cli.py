"""
Command line entry points.

    cadbridge host [--host 127.0.0.1] [--port 8080] [--document seed.yaml]
    cadbridge send METHOD [--params JSON] [--endpoint tcp://127.0.0.1:8080] [--timeout 30]
"""

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from typing import Any, Dict, List, Optional

from . import __version__
from .channel import ChannelError, CommandChannel
from .config import BridgeConfig, load_config
from .host.document import Document, load_document
from .host.server import HostServer
from .logger import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cadbridge", description="CAD command bridge")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    host = subparsers.add_parser("host", help="Run the in-memory host server")
    host.add_argument("--host", help="Address to listen on")
    host.add_argument("--port", type=int, help="Port to listen on (0 picks a free port)")
    host.add_argument("--document", help="YAML seed document to load")

    send = subparsers.add_parser("send", help="Send one request and print the result")
    send.add_argument("method", help="Host method name, e.g. health_check")
    send.add_argument("--params", default="{}", help="Request params as a JSON object (host units)")
    send.add_argument("--endpoint", help="Host endpoint, e.g. tcp://127.0.0.1:8080")
    send.add_argument("--timeout", type=float, help="Seconds to wait for the reply")
    return parser


async def send_request(config: BridgeConfig, method: str, params: Dict[str, Any]) -> Any:
    """Open a channel, send one request and close."""
    async with CommandChannel(config) as channel:
        return await channel.send(method, params)


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = load_config(args.config)
    configure_logging(args.log_level or settings.log_level, settings.log_file)

    if args.command == "host":
        document = load_document(args.document) if args.document else Document()
        server = HostServer(
            document,
            host=args.host or settings.host.host,
            port=settings.host.port if args.port is None else args.port,
            transaction_prefix=settings.host.transaction_prefix,
        )
        server.serve_forever()
        return 0

    try:
        params = json.loads(args.params)
    except json.JSONDecodeError as e:
        parser.error(f"--params is not valid JSON: {e}")
    if not isinstance(params, dict):
        parser.error("--params must be a JSON object")

    config = settings.client
    if args.endpoint:
        config = replace(config, endpoint=args.endpoint)
    if args.timeout is not None:
        config = replace(config, timeout=args.timeout)

    try:
        result = asyncio.run(send_request(config, args.method, params))
    except (ChannelError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
