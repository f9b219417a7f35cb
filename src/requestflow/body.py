# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Request body classification and replay.

A body is tagged with a BodyKind once, when the request is normalized. Retry and
upload code only ever looks at the tag, never at the value's runtime type.
"""

from __future__ import annotations

import copy
import json
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlencode

import httpx

from .errors import BodyNotReplayableError

JSON_CONTENT_TYPE = "application/json;charset=utf-8"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded;charset=UTF-8"
TEXT_CONTENT_TYPE = "text/plain;charset=UTF-8"
BINARY_CONTENT_TYPE = "application/octet-stream"


class BodyKind(str, Enum):
    NONE = "none"
    TEXT = "text"
    FORM = "form"
    MULTIPART = "multipart"
    BLOB = "blob"
    BYTES = "bytes"
    JSON = "json"
    STREAM = "stream"


@dataclass(frozen=True)
class FormBody:
    """URL-encoded form fields (`application/x-www-form-urlencoded`)."""

    fields: tuple[tuple[str, str], ...] = ()

    @classmethod
    def of(cls, data: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> FormBody:
        items = data.items() if isinstance(data, Mapping) else data
        return cls(tuple((str(key), str(value)) for key, value in items))

    def encode(self) -> str:
        return urlencode(self.fields)


@dataclass
class MultipartForm:
    """
    Multipart form data.

    `files` maps a field name to bytes or to a `(filename, bytes[, content_type])` tuple,
    the same shape httpx accepts.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    files: dict[str, Any] = field(default_factory=dict)

    def encode(self) -> tuple[bytes, str]:
        """Encode to wire bytes, returning `(content, content_type)` with the boundary."""
        request = httpx.Request("POST", "http://multipart.invalid/", data=self.fields, files=self.files)
        return request.read(), request.headers["content-type"]


@dataclass(frozen=True)
class Blob:
    content: bytes
    content_type: str = ""


_BYTES_TYPES = (bytes, bytearray, memoryview)
_JSON_TYPES = (Mapping, list, tuple, int, float, bool)


def classify_body(value: Any, request_type: str | None = None) -> BodyKind:
    """Decide the body tag for a logical request body."""
    if value is None:
        return BodyKind.NONE
    if isinstance(value, str):
        return BodyKind.TEXT
    if isinstance(value, FormBody):
        return BodyKind.FORM
    if isinstance(value, MultipartForm):
        return BodyKind.MULTIPART
    if isinstance(value, Blob):
        return BodyKind.BLOB
    if isinstance(value, _BYTES_TYPES):
        return BodyKind.BYTES
    if isinstance(value, Mapping) and request_type == "form":
        return BodyKind.FORM
    if isinstance(value, _JSON_TYPES):
        return BodyKind.JSON
    return BodyKind.STREAM


def is_replayable(body: BodyKind | Any) -> bool:
    """Everything except live streams can be sent again on a retry."""
    kind = body if isinstance(body, BodyKind) else classify_body(body)
    return kind is not BodyKind.STREAM


def snapshot(body: Any) -> Any:
    """Deep copy of a replayable body; the original is left untouched."""
    if body is None or isinstance(body, (str, bytes)):
        return body
    return copy.deepcopy(body)


def detect_content_type(kind: BodyKind, value: Any) -> str | None:
    """Content-Type to set when the caller provided none."""
    if kind is BodyKind.TEXT:
        return TEXT_CONTENT_TYPE
    if kind is BodyKind.FORM:
        return FORM_CONTENT_TYPE
    if kind is BodyKind.BLOB:
        return value.content_type or BINARY_CONTENT_TYPE
    if kind in (BodyKind.BYTES, BodyKind.STREAM):
        return BINARY_CONTENT_TYPE
    if kind is BodyKind.JSON:
        return JSON_CONTENT_TYPE
    # Multipart: the encoder sets the boundary header.
    return None


def encode_body(kind: BodyKind, value: Any, content_type: str = "") -> Any:
    """Turn a logical body into its wire form."""
    lowered = (content_type or "").lower()
    if kind is BodyKind.JSON:
        if isinstance(value, Mapping) and "application/x-www-form-urlencoded" in lowered:
            return FormBody.of(value).encode()
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    if kind is BodyKind.FORM:
        form = value if isinstance(value, FormBody) else FormBody.of(value)
        return form.encode()
    if kind is BodyKind.BLOB:
        return value.content
    if kind is BodyKind.BYTES:
        return bytes(value)
    return value


async def as_async_stream(body: Any) -> AsyncIterator[bytes]:
    """Yield chunks of a STREAM body (async iterable, iterable of bytes or file-like)."""
    if isinstance(body, AsyncIterable):
        async for chunk in body:
            yield chunk
        return
    read = getattr(body, "read", None)
    if callable(read):
        while True:
            chunk = read(64 * 1024)
            if not chunk:
                return
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
    for chunk in body:
        yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk


class ReplayableBody:
    """
    Per-request body holder handing out the wire body for each attempt.

    Replayable bodies are frozen once and every attempt gets its own copy. A stream is
    handed out on attempt 0 only; asking for it again raises BodyNotReplayableError.
    """

    def __init__(self, kind: BodyKind, body: Any, frozen: Any = None):
        self.kind = kind
        self._live = body
        self._frozen = None
        if is_replayable(kind) and body is not None:
            self._frozen = frozen if frozen is not None else snapshot(body)

    @property
    def replayable(self) -> bool:
        return is_replayable(self.kind)

    def for_attempt(self, attempt: int) -> Any:
        if not self.replayable:
            if attempt == 0:
                return self._live
            raise BodyNotReplayableError(
                "Request body is a stream that was consumed by a previous attempt and cannot be replayed",
                attempt=attempt,
            )
        return snapshot(self._frozen)


__all__ = [
    "BINARY_CONTENT_TYPE",
    "Blob",
    "BodyKind",
    "FORM_CONTENT_TYPE",
    "FormBody",
    "JSON_CONTENT_TYPE",
    "MultipartForm",
    "ReplayableBody",
    "TEXT_CONTENT_TYPE",
    "as_async_stream",
    "classify_body",
    "detect_content_type",
    "encode_body",
    "is_replayable",
    "snapshot",
]
