"""Built-in header hooks configurable by name.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import logging
from typing import Any, Dict

from aiohttp import ClientResponse, web

logger = logging.getLogger(__name__)


# ============================================================================
# PRE-HOOKS (modify the upstream request)
# ============================================================================


async def set_request_header(
    upstream_request,
    request: web.Request,
    response: web.StreamResponse,
    params: Dict[str, Any],
):
    """Set a header on the upstream request, replacing any existing value.

    Params:
        name: Header name
        value: Header value

    Example config:
        hook: set_request_header
        params:
          name: X-Env
          value: staging
    """
    name = params.get("name")
    if not name:
        logger.error("set_request_header: missing 'name' parameter")
        return
    upstream_request.headers[name] = str(params.get("value", ""))


async def remove_request_header(
    upstream_request,
    request: web.Request,
    response: web.StreamResponse,
    params: Dict[str, Any],
):
    """Remove a header from the upstream request.

    Params:
        name: Header name (case-insensitive)
    """
    name = params.get("name")
    if not name:
        logger.error("remove_request_header: missing 'name' parameter")
        return
    upstream_request.headers.popall(name, None)


async def forwarded_headers(
    upstream_request,
    request: web.Request,
    response: web.StreamResponse,
    params: Dict[str, Any],
):
    """Add X-Forwarded-For, X-Forwarded-Host and X-Forwarded-Proto.

    X-Forwarded-For is appended to when the caller already sent one.
    """
    client_ip = request.remote or "unknown"
    existing = upstream_request.headers.get("X-Forwarded-For", "")
    upstream_request.headers["X-Forwarded-For"] = f"{existing}, {client_ip}".strip(", ")
    upstream_request.headers["X-Forwarded-Host"] = request.headers.get("Host", "")
    upstream_request.headers["X-Forwarded-Proto"] = request.scheme


# ============================================================================
# POST-HOOKS (modify the caller response)
# ============================================================================


async def set_response_header(
    upstream_response: ClientResponse,
    request: web.Request,
    response: web.StreamResponse,
    params: Dict[str, Any],
):
    """Set a header on the response sent back to the caller.

    Params:
        name: Header name
        value: Header value

    Example config:
        hook: set_response_header
        params:
          name: Cache-Control
          value: no-store
    """
    name = params.get("name")
    if not name:
        logger.error("set_response_header: missing 'name' parameter")
        return
    response.headers[name] = str(params.get("value", ""))


async def remove_response_header(
    upstream_response: ClientResponse,
    request: web.Request,
    response: web.StreamResponse,
    params: Dict[str, Any],
):
    """Remove a header copied from the upstream response.

    Params:
        name: Header name (case-insensitive)
    """
    name = params.get("name")
    if not name:
        logger.error("remove_response_header: missing 'name' parameter")
        return
    response.headers.popall(name, None)


# Hook registry for easy lookup
BUILTIN_PRE_HOOKS = {
    "set_request_header": set_request_header,
    "remove_request_header": remove_request_header,
    "forwarded_headers": forwarded_headers,
}

BUILTIN_POST_HOOKS = {
    "set_response_header": set_response_header,
    "remove_response_header": remove_response_header,
}
