"""Upstream target resolution.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import re
from typing import Mapping, Tuple

from multidict import CIMultiDict
from yarl import URL

from upstream_proxy.errors import InvalidTargetError

SCHEME_RE = re.compile(r"https?://", re.IGNORECASE)

DEFAULT_PORT = 80


def parse_target(to: str) -> Tuple[str, int]:
    """Split a configured upstream into host and port.

    Any ``http://``/``https://`` scheme and any slash are dropped, so
    ``"https://upstream.svc/"`` and ``"upstream.svc"`` are equivalent.
    The upstream is always reached over plain HTTP.

    Args:
        to: Upstream as ``host``, ``host:port`` or a URL-like string

    Returns:
        Tuple of (host, port)

    Raises:
        InvalidTargetError: No host, or a port that is not a valid number
    """
    if not isinstance(to, str):
        raise InvalidTargetError(f"Invalid upstream target: {to!r}")

    remainder = SCHEME_RE.sub("", to.strip()).replace("/", "")
    host, _, port = remainder.partition(":")

    if not host:
        raise InvalidTargetError(f"Upstream target has no host: {to!r}")

    if not port:
        return host, DEFAULT_PORT

    try:
        port_number = int(port)
    except ValueError:
        raise InvalidTargetError(f"Invalid port in upstream target: {to!r}") from None

    if not 0 < port_number < 65536:
        raise InvalidTargetError(f"Port out of range in upstream target: {to!r}")

    return host, port_number


class UpstreamRequest:
    """Fully resolved outbound request.

    Pre-request hooks receive this object and may change ``method``,
    ``path`` or ``headers`` before anything is sent upstream.
    """

    protocol = "http"

    def __init__(
        self,
        method: str,
        headers: CIMultiDict,
        host: str,
        port: int,
        path: str,
        timeout: int,
    ):
        self.method = method
        self.headers = headers
        self.host = host
        self.port = port
        self.path = path
        self.timeout = timeout

    @property
    def url(self) -> URL:
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        netloc = self.host if self.port == DEFAULT_PORT else f"{self.host}:{self.port}"
        return URL(f"{self.protocol}://{netloc}{path}", encoded=True)

    def __repr__(self) -> str:
        return (
            f"<UpstreamRequest {self.method} {self.protocol}://{self.host}:{self.port}"
            f"{self.path} timeout={self.timeout}ms>"
        )


def outbound_headers(headers: Mapping[str, str]) -> CIMultiDict:
    """Copy inbound headers, dropping Host in any casing."""
    result = CIMultiDict()
    for name, value in headers.items():
        if name.lower() != "host":
            result.add(name, value)
    return result


def resolve(
    to: str,
    path: str,
    headers: Mapping[str, str],
    method: str,
    timeout: int,
) -> UpstreamRequest:
    """Build the outbound request descriptor for one inbound request."""
    host, port = parse_target(to)
    return UpstreamRequest(
        method=method,
        headers=outbound_headers(headers),
        host=host,
        port=port,
        path=path,
        timeout=timeout,
    )
