"""Example hooks demonstrating request/response modification.

Functions named ``before_request`` and ``after_response`` are picked up
automatically when this directory is passed with ``--hooks``.
"""

import logging

logger = logging.getLogger(__name__)


# Example 1: Simple before_request hook using function name
async def before_request(upstream_request, request, response):
    """Modify the upstream request before any body byte is sent.

    Args:
        upstream_request: UpstreamRequest (method, path, headers, host, port)
        request: Original aiohttp Request object
        response: Caller response, not yet sent
    """
    # Add custom header to all outgoing requests
    upstream_request.headers["X-Proxied-By"] = "upstream-proxy"

    logger.info(f"Proxying {upstream_request.method} {upstream_request.url}")


# Example 2: Simple after_response hook using function name
def after_response(upstream_response, request, response):
    """Modify the caller response before its headers are sent.

    Hooks may be plain functions too.

    Args:
        upstream_response: aiohttp ClientResponse object
        request: Original aiohttp Request object
        response: Caller response with upstream status and headers copied
    """
    logger.info(f"Received response: {upstream_response.status}")
    response.headers["X-Upstream-Status"] = str(upstream_response.status)
