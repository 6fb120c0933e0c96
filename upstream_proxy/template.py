"""Route templates such as ``/users/:id`` or ``/files/*path?version``.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import re
from typing import Any, Mapping
from urllib.parse import quote

from upstream_proxy.errors import TemplateResolutionError

PLACEHOLDER_RE = re.compile(r"([:*])([A-Za-z0-9_]+)")


def build(template: str, params: Mapping[str, Any]) -> str:
    """Build a path from a template and route parameters.

    Supported placeholders:
        :name   single segment, value is fully percent-encoded
        *name   splat, slashes in the value are kept
        ?a&b    optional query parameters, appended only when present
                (``?:a&:b`` is accepted too)

    Args:
        template: Route template
        params: Route parameters (e.g. ``request.match_info``)

    Returns:
        Interpolated path

    Raises:
        TemplateResolutionError: A path placeholder has no matching parameter
    """
    path, _, query_names = template.partition("?")

    def substitute(match: re.Match) -> str:
        kind, name = match.group(1), match.group(2)
        if name not in params or params[name] is None:
            raise TemplateResolutionError(template, name)
        safe = "/" if kind == "*" else ""
        return quote(str(params[name]), safe=safe)

    result = PLACEHOLDER_RE.sub(substitute, path)

    query = []
    for name in filter(None, query_names.split("&")):
        name = name.lstrip(":")
        if params.get(name) is not None:
            query.append(f"{quote(name, safe='')}={quote(str(params[name]), safe='')}")

    if query:
        result = f"{result}?{'&'.join(query)}"

    return result
