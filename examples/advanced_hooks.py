"""Advanced hook examples using the decorators.

Reference them by name from a route::

    routes:
      - path: /api/{tail:.*}
        to: api.internal:8080
        at: /*tail
        before: [advanced_hooks.add_auth_header, advanced_hooks.require_api_key]
        after: [advanced_hooks.hide_server_header]
"""

import os

from aiohttp import web

from upstream_proxy.hooks import after_response, before_request


@before_request
async def require_api_key(upstream_request, request, response):
    """Reject requests without the expected API key."""
    expected = os.getenv("PROXY_API_KEY")
    if expected and request.headers.get("X-Api-Key") != expected:
        raise web.HTTPUnauthorized(text="Missing or invalid API key")
    upstream_request.headers.popall("X-Api-Key", None)


@before_request
async def add_auth_header(upstream_request, request, response):
    """Add authentication header for internal backends."""
    if upstream_request.host.endswith(".internal"):
        upstream_request.headers["Authorization"] = "Bearer YOUR_TOKEN_HERE"


@before_request
def tag_query(upstream_request, request, response):
    """Add a tracking parameter to the upstream query string."""
    separator = "&" if "?" in upstream_request.path else "?"
    upstream_request.path = f"{upstream_request.path}{separator}source=proxy"


@after_response
async def hide_server_header(upstream_response, request, response):
    """Do not leak upstream server software to callers."""
    response.headers.popall("Server", None)
    response.headers.popall("X-Powered-By", None)
