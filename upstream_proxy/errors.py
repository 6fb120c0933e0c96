"""Errors raised by the forwarding pipeline.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""


class ProxyError(Exception):
    """Base class for proxy failures.

    Attributes:
        status: HTTP status the error middleware answers with
        code: Machine readable error code used in the JSON error body
        headers_sent: True when the caller response was already started
    """

    status = 500
    code = "proxy_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.headers_sent = False


class InvalidTargetError(ProxyError):
    """The configured upstream (``to``) cannot be parsed into host and port."""

    code = "invalid_target"


class TemplateResolutionError(ProxyError):
    """A path template references a parameter the request does not carry."""

    code = "template_error"

    def __init__(self, template: str, param: str):
        super().__init__(f"Missing parameter '{param}' for path template '{template}'")
        self.template = template
        self.param = param


class UpstreamConnectionError(ProxyError):
    """The upstream connection was refused, reset or failed to resolve."""

    status = 502
    code = "bad_gateway"


class UpstreamTimeoutError(UpstreamConnectionError):
    """The upstream connection timed out."""

    status = 504
    code = "gateway_timeout"


class UpstreamNoStatusError(ProxyError):
    """The upstream answered without a usable status code."""

    status = 503
    code = "service_unavailable"


class HookError(ProxyError):
    """A pre-request or post-response hook failed."""

    code = "hook_error"

    def __init__(self, stage: str, hook_name: str, cause: BaseException):
        super().__init__(f"Error in {stage} hook {hook_name}: {cause}")
        self.stage = stage
        self.hook_name = hook_name
