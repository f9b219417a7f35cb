# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""URL helpers used during request normalization."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _param_pairs(params: Mapping[str, Any]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            pairs.extend((str(key), _query_value(item)) for item in value if item is not None)
        else:
            pairs.append((str(key), _query_value(value)))
    return pairs


def build_url(
    url: str,
    params: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
    method: str = "GET",
) -> str:
    """
    Append query params to a GET URL.

    Other methods get the URL back untouched. Params are sorted by key then value so
    equivalent requests produce identical URLs. An existing query string is kept in
    place ahead of the new params; relative URLs stay relative.
    """
    if not params or (method or "GET").upper() != "GET":
        return url
    mapping = params if isinstance(params, Mapping) else dict(params)
    pairs = sorted(_param_pairs(mapping))
    if not pairs:
        return url

    parts = urlsplit(str(url or ""))
    existing = parse_qsl(parts.query, keep_blank_values=True)
    query = urlencode(existing + pairs)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


__all__ = ["build_url"]
