"""Core request forwarding.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional, Sequence, Union

from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout, TCPConnector, hdrs, web
from aiohttp.web import Request, StreamResponse

from upstream_proxy.errors import (
    ProxyError,
    UpstreamConnectionError,
    UpstreamNoStatusError,
    UpstreamTimeoutError,
)
from upstream_proxy.hooks import AFTER, BEFORE, Hook, as_hook_list, run_hooks
from upstream_proxy.rewrite import PathRewrite, request_query, rewrite, with_query
from upstream_proxy.target import UpstreamRequest, parse_target, resolve

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3000

# Owned by the JSON body of the 503 fallback
BODY_HEADERS = ("content-encoding", "content-length", "content-type", "transfer-encoding")


class ProxyOptions:
    """Read-only settings shared by every request a Proxy forwards."""

    def __init__(
        self,
        to: str,
        at: Optional[PathRewrite] = None,
        timeout: int = DEFAULT_TIMEOUT,
        before: Union[None, Hook, Sequence[Hook]] = None,
        after: Union[None, Hook, Sequence[Hook]] = None,
    ):
        """Initialize proxy options.

        Args:
            to: Upstream as host, host:port or http(s)://host:port
            at: Route template (``/users/:id``) or function(request) -> path
            timeout: Upstream connect and read timeout in milliseconds
            before: Hook or hooks run before the request is sent upstream
            after: Hook or hooks run before the response is sent to the caller

        Raises:
            InvalidTargetError: ``to`` has no host or an invalid port
        """
        self._host, self._port = parse_target(to)
        self._to = to
        self._at = at
        self._timeout = timeout
        self._before = tuple(as_hook_list(before))
        self._after = tuple(as_hook_list(after))

    @property
    def to(self) -> str:
        return self._to

    @property
    def at(self) -> Optional[PathRewrite]:
        return self._at

    @property
    def timeout(self) -> int:
        return self._timeout

    @property
    def before(self) -> tuple:
        return self._before

    @property
    def after(self) -> tuple:
        return self._after

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port


class RequestLogger(logging.LoggerAdapter):
    """Logger bound to a single proxied request."""

    def process(self, msg, kwargs):
        kwargs["extra"] = dict(self.extra)
        return (
            f"[proxy:{self.extra['upstream']}] {self.extra['method']} "
            f"{self.extra['path']}: {msg}",
            kwargs,
        )


def error_response(status: int, code: str, message: str) -> web.Response:
    """Build the JSON error body used for proxy failures."""
    return web.json_response(
        {"status": status, "error": {"message": message, "code": code}},
        status=status,
    )


class Proxy:
    """Forward inbound requests to one upstream service, streaming both bodies.

    Mount ``Proxy.handle`` as an aiohttp route handler. Connection and hook
    failures are raised out of the handler for the application's error
    middleware to translate; only an upstream answer without a status code
    is turned into a response here (503).
    """

    def __init__(self, options: ProxyOptions, session: Optional[ClientSession] = None):
        self.options = options
        self.session = session

    def _get_session(self) -> ClientSession:
        if self.session is None or self.session.closed:
            # force_close: one connection per request, never reused
            self.session = ClientSession(
                connector=TCPConnector(force_close=True),
                auto_decompress=False,
            )
        return self.session

    async def close(self):
        """Close the upstream client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    def prepare(self, request: Request) -> UpstreamRequest:
        """Resolve the upstream request for an inbound request."""
        if self.options.at is not None:
            path = rewrite(self.options.at, request)
        else:
            path = with_query(request.rel_url.raw_path, request_query(request))

        return resolve(
            self.options.to,
            path,
            request.headers,
            request.method,
            self.options.timeout,
        )

    async def handle(self, request: Request) -> StreamResponse:
        """Proxy one request.

        Args:
            request: Inbound request

        Returns:
            Streamed upstream response, or the 503 JSON error response

        Raises:
            TemplateResolutionError: ``at`` references a missing route parameter
            HookError: A hook failed
            UpstreamConnectionError: Connecting to or reading from upstream failed
        """
        upstream_request = self.prepare(request)
        log = RequestLogger(
            logger,
            {
                "upstream": f"{upstream_request.host}:{upstream_request.port}",
                "method": upstream_request.method,
                "path": upstream_request.path,
            },
        )
        log.debug(f"Request options: {upstream_request!r}")

        response = StreamResponse()
        await run_hooks(self.options.before, upstream_request, request, response, BEFORE)

        # Framing is owned by the client; the body is re-chunked if needed
        headers = upstream_request.headers.copy()
        headers.popall(hdrs.TRANSFER_ENCODING, None)

        seconds = upstream_request.timeout / 1000
        timeout = ClientTimeout(total=None, sock_connect=seconds, sock_read=seconds)
        body = self._stream_request_body(request, log) if request.body_exists else None

        try:
            async with self._get_session().request(
                upstream_request.method,
                upstream_request.url,
                headers=headers,
                data=body,
                timeout=timeout,
                allow_redirects=False,
            ) as upstream:
                return await self._relay_response(upstream, request, response, upstream_request, log)
        except ConnectionResetError:
            # Caller went away; the upstream response was closed by the relay
            raise
        except asyncio.TimeoutError as e:
            log.error(f"Upstream timed out after {upstream_request.timeout}ms")
            raise self._failure(
                UpstreamTimeoutError(
                    f"Service at {self.options.to} timed out after {upstream_request.timeout}ms"
                ),
                response,
            ) from e
        except (ClientError, OSError) as e:
            log.error(f"Upstream connection error: {e}")
            raise self._failure(
                UpstreamConnectionError(f"Service at {self.options.to} failed: {e}"),
                response,
            ) from e

    @staticmethod
    def _failure(error: ProxyError, response: StreamResponse) -> ProxyError:
        error.headers_sent = response.prepared
        return error

    async def _stream_request_body(self, request: Request, log: RequestLogger) -> AsyncIterator[bytes]:
        """Yield inbound body chunks as they arrive."""
        size = 0
        async for chunk in request.content.iter_any():
            size += len(chunk)
            yield chunk
        log.debug(f"Request body forwarded ({size} bytes)")

    async def _relay_response(
        self,
        upstream: ClientResponse,
        request: Request,
        response: StreamResponse,
        upstream_request: UpstreamRequest,
        log: RequestLogger,
    ) -> StreamResponse:
        """Copy the upstream response to the caller."""
        log.debug(f"Received {upstream.status} response")

        for name, value in upstream.headers.items():
            response.headers.add(name, value)

        if not upstream.status:
            error = UpstreamNoStatusError(
                f"Service at {self.options.to}/{upstream_request.path} did not respond"
            )
            log.warning(error.message)
            fallback = error_response(error.status, error.code, error.message)
            for name, value in response.headers.items():
                if name.lower() not in BODY_HEADERS:
                    fallback.headers.add(name, value)
            return fallback

        response.set_status(upstream.status, upstream.reason)
        await run_hooks(self.options.after, upstream, request, response, AFTER)
        await response.prepare(request)

        size = 0
        try:
            async for chunk in upstream.content.iter_any():
                try:
                    await response.write(chunk)
                except ConnectionResetError:
                    log.info("Caller disconnected, closing upstream connection")
                    upstream.close()
                    raise
                size += len(chunk)
        except asyncio.CancelledError:
            log.info("Request cancelled, closing upstream connection")
            upstream.close()
            raise

        await response.write_eof()
        log.debug(f"Response body forwarded ({size} bytes)")
        return response


def proxy(
    to: str,
    at: Optional[PathRewrite] = None,
    timeout: int = DEFAULT_TIMEOUT,
    before: Union[None, Hook, Sequence[Hook]] = None,
    after: Union[None, Hook, Sequence[Hook]] = None,
) -> Proxy:
    """Create a Proxy for ``to``.

    Example:
        app.router.add_route("*", "/users/{id}", proxy("users.svc:8080", at="/v2/users/:id").handle)
    """
    return Proxy(ProxyOptions(to, at=at, timeout=timeout, before=before, after=after))
