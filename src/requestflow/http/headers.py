# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Case-insensitive header helpers.

Options and responses carry headers as plain dicts with lowercase names. Callers may
hand in any casing, an httpx.Headers, or a list of pairs; everything is folded here.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any


def _pairs(headers: Any) -> Iterator[tuple[str, Any]]:
    if not headers:
        return
    items = headers.items() if hasattr(headers, "items") else headers
    for key, value in items:
        name = "" if key is None else str(key).strip().lower()
        if name:
            yield name, value


def normalize_headers(headers: Any) -> dict[str, str]:
    """Copy `headers` into a dict keyed by lowercase name; None values become ''."""
    return {name: "" if value is None else str(value) for name, value in _pairs(headers)}


def header_value(headers: Any, name: str, default: str = "") -> str:
    """Stripped value of header `name` in any casing, or `default`."""
    if not name:
        return default
    wanted = name.lower()
    if isinstance(headers, dict) and wanted in headers:
        value = headers[wanted]
        return default if value is None else str(value).strip()
    for key, value in _pairs(headers):
        if key == wanted:
            return default if value is None else str(value).strip()
    return default


def parse_raw_headers(raw: str | None) -> dict[str, str]:
    """
    Parse a CRLF-separated `Name: value` block into a lowercase-keyed dict.

    Lines without a name are skipped; values may themselves contain colons.
    """
    headers: dict[str, str] = {}
    if not raw:
        return headers
    for line in raw.splitlines():
        key, _, value = line.partition(":")
        key = key.strip().lower()
        if not key:
            continue
        headers[key] = value.strip()
    return headers


def content_length(headers: Any) -> int | None:
    """Return Content-Length as a non-negative int, or None when absent or invalid."""
    raw = header_value(headers, "content-length")
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


__all__ = ["content_length", "header_value", "normalize_headers", "parse_raw_headers"]
