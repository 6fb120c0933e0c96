"""Command-line interface for upstream-proxy.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Tuple

from upstream_proxy.config import Config
from upstream_proxy.errors import InvalidTargetError
from upstream_proxy.hooks import AFTER, BEFORE, HookManager
from upstream_proxy.proxy import Proxy, ProxyOptions
from upstream_proxy.server import ProxyServer


def setup_logging(level: str):
    """Set up logging configuration.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_routes(config: Config, hook_manager: HookManager) -> List[Tuple[str, Proxy]]:
    """Create a Proxy for every configured route.

    Raises:
        InvalidTargetError: A route has no upstream or an invalid one
        ValueError: A route references an unknown hook
    """
    routes = []
    for route in config.route_configs():
        if not route.get("to"):
            raise InvalidTargetError(f"Route {route['path']} has no upstream ('to')")

        options = ProxyOptions(
            to=route["to"],
            at=route.get("at"),
            timeout=int(route["timeout"]),
            before=hook_manager.resolve(route.get("before"), BEFORE),
            after=hook_manager.resolve(route.get("after"), AFTER),
        )
        routes.append((route["path"], Proxy(options)))
    return routes


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Upstream Proxy - streaming HTTP forwarding with path rewriting and hooks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Forward everything to a local service
  upstream-proxy --to localhost:4000

  # Rewrite paths with a route template
  upstream-proxy --to users.svc:8080 --at /v2/*tail

  # Load routes from file
  upstream-proxy --config routes.yaml

  # Use environment variables
  export PROXY_PORT=8080
  export PROXY_TO=localhost:4000
  upstream-proxy
        """,
    )

    parser.add_argument(
        "--host",
        type=str,
        help="Host to bind the proxy server to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind the proxy server to (default: 8080)",
    )
    parser.add_argument(
        "--to",
        type=str,
        help="Upstream service for the catch-all route (e.g., localhost:4000)",
    )
    parser.add_argument(
        "--at",
        type=str,
        help="Path template for the catch-all route (e.g., /api/*tail)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        help="Upstream timeout in milliseconds (default: 3000)",
    )
    parser.add_argument(
        "--hooks",
        type=str,
        help="Directory containing hook modules",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    # Load configuration
    if args.config:
        try:
            config = Config.from_file(args.config)
        except FileNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        config = Config.from_env()

    # Override with CLI arguments
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.to:
        config.to = args.to
    if args.at:
        config.at = args.at
    if args.timeout:
        config.timeout = args.timeout
    if args.hooks:
        config.hooks_dir = args.hooks
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    hook_manager = HookManager(config.hooks_dir)
    hook_manager.load_hooks()

    try:
        routes = build_routes(config, hook_manager)
    except (InvalidTargetError, TypeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not routes:
        print(
            "Error: no upstream configured. Use --to, PROXY_TO or routes in --config.",
            file=sys.stderr,
        )
        sys.exit(1)

    proxy_server = ProxyServer(host=config.host, port=config.port, routes=routes)

    logger.info("Starting Upstream Proxy")
    logger.info(f"Configuration: {config.to_dict()}")

    try:
        asyncio.run(proxy_server.run())
    except PermissionError as e:
        if config.port < 1024:
            print(
                f"\nError: Cannot bind to port {config.port} - Permission denied\n",
                file=sys.stderr,
            )
            print("Use a non-privileged port: upstream-proxy --port 8080\n", file=sys.stderr)
        else:
            logger.error(f"Permission error: {e}", exc_info=True)
        sys.exit(1)
    except OSError as e:
        if "Address already in use" in str(e):
            print(f"\nError: Port {config.port} is already in use\n", file=sys.stderr)
        else:
            logger.error(f"OS error: {e}", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down")


if __name__ == "__main__":
    main()
