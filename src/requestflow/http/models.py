# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""HTTP request/response data models used across the request pipeline."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

from ..body import BodyKind
from ..config import RequestSettings

if TYPE_CHECKING:
    from ..cancellation import CancelSignal

Headers = dict[str, str]
ProgressCallback = Callable[["ProgressEvent"], Any]


@dataclass
class ProgressEvent:
    """Bytes moved so far for one transfer; total and fraction are None when unknown."""

    bytes_transferred: int
    total_bytes: int | None = None
    fraction: float | None = None

    @classmethod
    def build(cls, transferred: int, total: int | None) -> ProgressEvent:
        fraction = transferred / total if total else None
        return cls(bytes_transferred=transferred, total_bytes=total, fraction=fraction)

    @property
    def percent(self) -> int | None:
        if self.fraction is None:
            return None
        return round(100 * self.fraction)


@dataclass
class RequestOptions:
    """
    Per-request configuration.

    Every field defaults to None, meaning "inherit". RequestPipeline resolves the
    inherited fields against its defaults during normalization, after which no field
    that has a default is left as None. Durations are milliseconds.
    """

    method: str | None = None
    headers: Headers | None = None
    request_type: str | None = None
    response_type: str | None = None
    timeout: float | None = None
    retries: int | None = None
    retry_delay: float | None = None
    backoff: Callable[[int], float] | None = None
    on_upload_progress: ProgressCallback | None = None
    on_download_progress: ProgressCallback | None = None
    signal: CancelSignal | None = None
    params: Mapping[str, Any] | None = None
    data: Any = None
    body: Any = None
    body_copy: Any = None
    body_kind: BodyKind | None = None

    def merged(self, overrides: RequestOptions | Mapping[str, Any] | None = None, **kwargs: Any) -> RequestOptions:
        """Return a copy with every non-None override applied on top of self."""
        values: dict[str, Any] = {}
        if isinstance(overrides, RequestOptions):
            values.update({f.name: getattr(overrides, f.name) for f in fields(overrides)})
        elif overrides:
            values.update(overrides)
        values.update(kwargs)
        known = {f.name for f in fields(self)}
        unknown = set(values) - known
        if unknown:
            raise TypeError(f"Unknown request options: {', '.join(sorted(unknown))}")
        return replace(self, **{key: value for key, value in values.items() if value is not None})

    @classmethod
    def from_settings(cls, settings: RequestSettings) -> RequestOptions:
        return cls(
            method="GET",
            headers={},
            request_type="json",
            response_type="json",
            timeout=settings.timeout,
            retries=settings.retries,
            retry_delay=settings.retry_delay,
        )


@dataclass
class RequestContext:
    """The unit request interceptors observe and may replace."""

    url: str
    options: RequestOptions


async def _single_chunk(content: bytes) -> AsyncIterator[bytes]:
    if content:
        yield content


@dataclass
class Response:
    """
    HTTP response whose body is an async byte stream consumed at most once.

    `read()`, `text()` and `json()` buffer the stream on first use.
    """

    status: int
    headers: Headers = field(default_factory=dict)
    body: AsyncIterator[bytes] | None = None
    reason: str = ""
    url: str | None = None
    response_type: str = "json"
    meta: dict[str, Any] = field(default_factory=dict)
    _content: bytes | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body_used(self) -> bool:
        return self._content is not None

    @classmethod
    def from_bytes(cls, content: bytes, *, status: int = 200, headers: Mapping[str, str] | None = None, **kwargs: Any) -> Response:
        return cls(status=status, headers=dict(headers or {}), body=_single_chunk(content), **kwargs)

    @classmethod
    def from_text(cls, text: str, *, status: int = 200, headers: Mapping[str, str] | None = None, **kwargs: Any) -> Response:
        return cls.from_bytes(text.encode("utf-8"), status=status, headers=headers, **kwargs)

    async def read(self) -> bytes:
        if self._content is not None:
            return self._content
        content = bytearray()
        if self.body is not None:
            async for chunk in self.body:
                content.extend(chunk)
        self._content = bytes(content)
        return self._content

    async def text(self, encoding: str = "utf-8") -> str:
        return (await self.read()).decode(encoding, errors="replace")

    async def json(self) -> Any:
        return json.loads(await self.read())

    async def parse(self) -> Any:
        """Decode the body according to `response_type` (json, text, bytes or blob)."""
        if self.response_type == "json":
            return await self.json()
        if self.response_type == "text":
            return await self.text()
        return await self.read()

    async def aclose(self) -> None:
        aclose = getattr(self.body, "aclose", None)
        if aclose is not None:
            await aclose()


@dataclass
class RetryPolicy:
    """Attempt budget: `retries` extra attempts with a fixed or pluggable delay (ms)."""

    retries: int = 0
    retry_delay: float = 2000
    backoff: Callable[[int], float] | None = None

    @property
    def attempts(self) -> int:
        return max(0, self.retries) + 1

    def delay_for(self, attempt: int) -> float:
        """Delay before `attempt` (1-based retry number)."""
        if self.backoff is not None:
            return max(0.0, float(self.backoff(attempt)))
        return max(0.0, float(self.retry_delay))

    @classmethod
    def from_options(cls, options: RequestOptions) -> RetryPolicy:
        return cls(
            retries=max(0, options.retries or 0),
            retry_delay=options.retry_delay if options.retry_delay is not None else cls.retry_delay,
            backoff=options.backoff,
        )
