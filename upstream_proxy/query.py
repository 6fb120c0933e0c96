"""Query string encoding with bracket notation for arrays.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

from typing import Dict, List, Mapping, Optional, Sequence, Union
from urllib.parse import quote, unquote_plus

QueryValue = Union[None, str, Sequence[str]]
Query = Mapping[str, QueryValue]

ARRAY_SUFFIX = "[]"


def _quote(value: str) -> str:
    return quote(str(value), safe="")


def encode(query: Query) -> str:
    """Encode a query mapping into a query string.

    Keys are sorted, list values use bracket notation and ``None`` values
    are written as a bare key.

    Example:
        encode({"tag": ["a", "b"], "q": "x y"}) -> "q=x%20y&tag[]=a&tag[]=b"
    """
    parts = []

    for key in sorted(query):
        value = query[key]
        name = _quote(key)

        if value is None:
            parts.append(name)
        elif isinstance(value, (list, tuple)):
            for item in value:
                if item is None:
                    parts.append(f"{name}{ARRAY_SUFFIX}")
                else:
                    parts.append(f"{name}{ARRAY_SUFFIX}={_quote(item)}")
        else:
            parts.append(f"{name}={_quote(value)}")

    return "&".join(parts)


def decode(raw: str) -> Dict[str, Union[Optional[str], List[Optional[str]]]]:
    """Decode a query string into a mapping.

    ``key[]=a&key[]=b`` and repeated plain keys both decode to lists.
    """
    result: Dict[str, Union[Optional[str], List[Optional[str]]]] = {}
    raw = raw.lstrip("?")
    if not raw:
        return result

    for pair in raw.split("&"):
        if not pair:
            continue

        if "=" in pair:
            key, value = pair.split("=", 1)
            value = unquote_plus(value)
        else:
            key, value = pair, None
        key = unquote_plus(key)

        if key.endswith(ARRAY_SUFFIX):
            key = key[: -len(ARRAY_SUFFIX)]
            existing = result.get(key)
            if isinstance(existing, list):
                existing.append(value)
            elif key in result:
                result[key] = [existing, value]
            else:
                result[key] = [value]
        elif key in result:
            existing = result[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[key] = [existing, value]
        else:
            result[key] = value

    return result
