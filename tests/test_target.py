"""Tests for target module."""

import pytest

from upstream_proxy.errors import InvalidTargetError
from upstream_proxy.target import outbound_headers, parse_target, resolve


@pytest.mark.parametrize(
    "to, expected",
    [
        ("https://upstream.svc/", ("upstream.svc", 80)),
        ("HTTP://upstream.svc", ("upstream.svc", 80)),
        ("upstream.svc:9090", ("upstream.svc", 9090)),
        ("http://localhost:4000/", ("localhost", 4000)),
        ("/upstream.svc", ("upstream.svc", 80)),
    ],
)
def test_parse_target(to, expected):
    """Test scheme and slashes are stripped and the port defaults to 80."""
    assert parse_target(to) == expected


@pytest.mark.parametrize("to", ["", "http://", "https:///", ":8080", "svc:http", "svc:70000", None])
def test_parse_target_invalid(to):
    """Test malformed targets are rejected."""
    with pytest.raises(InvalidTargetError):
        parse_target(to)


def test_outbound_headers_drop_host_in_any_case():
    """Test the Host header never reaches the upstream."""
    for name in ("host", "Host", "HOST", "hOsT"):
        headers = outbound_headers({name: "caller.example", "Accept": "*/*"})
        assert "host" not in headers
        assert headers["accept"] == "*/*"


def test_resolve():
    """Test the full outbound descriptor."""
    upstream_request = resolve(
        "https://upstream.svc/",
        "/orders?status=open",
        {"Host": "caller", "X-Trace": "1"},
        "POST",
        3000,
    )

    assert upstream_request.protocol == "http"
    assert upstream_request.host == "upstream.svc"
    assert upstream_request.port == 80
    assert upstream_request.method == "POST"
    assert upstream_request.path == "/orders?status=open"
    assert upstream_request.timeout == 3000
    assert dict(upstream_request.headers) == {"X-Trace": "1"}
    assert str(upstream_request.url) == "http://upstream.svc/orders?status=open"


def test_url_keeps_explicit_port_and_raw_path():
    """Test the upstream URL keeps a non-default port and the encoded path."""
    upstream_request = resolve("svc:9090", "/a%20b?tag[]=x", {}, "GET", 100)
    assert str(upstream_request.url) == "http://svc:9090/a%20b?tag[]=x"


def test_url_adds_leading_slash():
    """Test a relative path from a rewrite function is made absolute."""
    upstream_request = resolve("svc", "users", {}, "GET", 100)
    assert str(upstream_request.url) == "http://svc/users"
