"""Tests for server module."""

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase, unused_port

from upstream_proxy.errors import HookError, UpstreamConnectionError
from upstream_proxy.proxy import proxy
from upstream_proxy.server import ProxyServer, build_app, error_middleware


class TestErrorMiddleware(AioHTTPTestCase):
    """Test cases for error_middleware."""

    async def get_application(self):
        """Create application with failing handlers."""
        app = web.Application(middlewares=[error_middleware])

        async def hook_failure(request):
            raise HookError("before_request", "check", ValueError("bad token"))

        async def connection_failure(request):
            raise UpstreamConnectionError("Service at svc:80 failed: refused")

        async def late_failure(request):
            error = UpstreamConnectionError("reset")
            error.headers_sent = True
            raise error

        async def other_failure(request):
            raise web.HTTPNotFound(text="plain aiohttp error")

        app.router.add_get("/hook", hook_failure)
        app.router.add_get("/connection", connection_failure)
        app.router.add_get("/late", late_failure)
        app.router.add_get("/other", other_failure)
        return app

    async def test_hook_error(self):
        """Test hook errors become 500 JSON errors."""
        resp = await self.client.get("/hook")
        data = await resp.json()

        assert resp.status == 500
        assert data["status"] == 500
        assert data["error"]["code"] == "hook_error"
        assert "bad token" in data["error"]["message"]

    async def test_connection_error(self):
        """Test connection errors become 502 JSON errors."""
        resp = await self.client.get("/connection")
        data = await resp.json()

        assert resp.status == 502
        assert data == {
            "status": 502,
            "error": {"message": "Service at svc:80 failed: refused", "code": "bad_gateway"},
        }

    async def test_error_after_headers_sent_is_reraised(self):
        """Test errors after the response started are not answered."""
        resp = await self.client.get("/late")

        # aiohttp answers unhandled exceptions with a plain 500
        assert resp.status == 500
        assert resp.content_type != "application/json"

    async def test_other_errors_untouched(self):
        """Test non-proxy errors are left to aiohttp."""
        resp = await self.client.get("/other")

        assert resp.status == 404
        assert await resp.text() == "plain aiohttp error"


def test_build_app_mounts_routes():
    """Test each proxy is mounted for every method."""
    route_proxy = proxy("svc:80")
    app = build_app([("/api/{tail:.*}", route_proxy)])

    routes = [route for route in app.router.routes()]
    assert len(routes) == 1
    assert routes[0].method == "*"
    assert error_middleware in app.middlewares


def test_proxy_server_init():
    """Test ProxyServer keeps its bind address and routes."""
    routes = [("/{tail:.*}", proxy("svc:80"))]
    server = ProxyServer(host="127.0.0.1", port=3128, routes=routes)

    assert server.host == "127.0.0.1"
    assert server.port == 3128
    assert server.routes == routes
    assert isinstance(server.app, web.Application)


class TestProxyServerLifecycle(AioHTTPTestCase):
    """Starting and stopping a ProxyServer in front of a backend."""

    async def get_application(self):
        app = web.Application()

        async def hello(request):
            return web.Response(text="Hello, World!")

        app.router.add_get("/hello", hello)
        return app

    async def test_start_and_stop(self):
        """Test the server forwards requests and closes sessions on stop."""
        port = unused_port()
        route_proxy = proxy(f"{self.server.host}:{self.server.port}")
        server = ProxyServer(host="127.0.0.1", port=port, routes=[("/{tail:.*}", route_proxy)])
        await server.start()

        try:
            async with self.client.session.get(f"http://127.0.0.1:{port}/hello") as resp:
                assert resp.status == 200
                assert await resp.text() == "Hello, World!"
        finally:
            await server.stop()

        assert route_proxy.session.closed
