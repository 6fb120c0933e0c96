"""Proxy server hosting one or more proxied routes.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from aiohttp import web
from aiohttp.web import Request, StreamResponse

from upstream_proxy.errors import ProxyError
from upstream_proxy.proxy import Proxy, error_response

logger = logging.getLogger(__name__)


@web.middleware
async def error_middleware(request: Request, handler) -> StreamResponse:
    """Translate proxy errors raised by handlers into JSON error responses.

    Errors raised after the caller response was started cannot be answered
    and are re-raised so aiohttp drops the connection.
    """
    try:
        return await handler(request)
    except ProxyError as e:
        if e.headers_sent:
            logger.error(f"Proxy error after response started: {e}")
            raise
        logger.error(f"Proxy error for {request.method} {request.path}: {e}")
        return error_response(e.status, e.code, e.message)


class ProxyServer:
    """HTTP server forwarding configured routes to upstream services."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        routes: Optional[List[Tuple[str, Proxy]]] = None,
    ):
        """Initialize proxy server.

        Args:
            host: Host to bind the proxy server to
            port: Port to bind the proxy server to
            routes: (path pattern, Proxy) pairs, matched in order for every method
        """
        self.host = host
        self.port = port
        self.routes = routes or []
        self.app = build_app(self.routes)
        self.runner: Optional[web.AppRunner] = None

    async def start(self):
        """Start the proxy server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info(f"Proxy server started on {self.host}:{self.port}")
        for path, route_proxy in self.routes:
            logger.info(f"Route {path} -> {route_proxy.options.to}")

    async def stop(self):
        """Stop the proxy server."""
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("Proxy server stopped")

    async def run(self):
        """Run the proxy server indefinitely."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()


def build_app(routes: List[Tuple[str, Proxy]]) -> web.Application:
    """Create an aiohttp application mounting each proxy on its path."""
    app = web.Application(middlewares=[error_middleware])

    for path, route_proxy in routes:
        app.router.add_route("*", path, route_proxy.handle)

    async def close_sessions(app: web.Application):
        for _, route_proxy in routes:
            await route_proxy.close()

    app.on_cleanup.append(close_sessions)
    return app
