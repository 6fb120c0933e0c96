"""Upstream path construction.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

from typing import Callable, Union

from aiohttp.web import Request

from upstream_proxy import query as query_codec
from upstream_proxy.template import build

PathRewrite = Union[str, Callable[[Request], str]]


def join_query(path: str, query_string: str) -> str:
    """Append an encoded query string to a path."""
    if not query_string:
        return path
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{query_string}"


def with_query(path: str, query: query_codec.Query) -> str:
    """Return ``path`` with the encoded ``query`` appended, if any."""
    return join_query(path, query_codec.encode(query))


def request_query(request: Request) -> dict:
    """Decode the inbound query string with bracket notation.

    The raw string is used: ``request.query_string`` is already unquoted.
    """
    return query_codec.decode(request.rel_url.raw_query_string)


def rewrite(at: PathRewrite, request: Request) -> str:
    """Build the upstream path for a request.

    A callable ``at`` owns the whole path, query included, and its result is
    used verbatim. A template is interpolated with the route parameters and
    the inbound query is appended.

    Args:
        at: Route template or function
        request: Inbound request

    Returns:
        Upstream path
    """
    if callable(at):
        return at(request)

    path = build(at, request.match_info)
    return join_query(path, query_codec.encode(request_query(request)))
