# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""httpx-backed transports."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

import httpx

from ..body import MultipartForm, as_async_stream
from ..cancellation import run_cancellable
from ..config import RequestSettings, load_request_settings
from ..errors import AbortedError, TransportError, categorize_exception
from .client import Transport
from .headers import normalize_headers
from .models import RequestOptions, Response

if TYPE_CHECKING:
    from ..cancellation import CancelSignal

logger = logging.getLogger(__name__)


def _content_kwargs(body: Any) -> dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, MultipartForm):
        return {"data": body.fields, "files": body.files}
    if isinstance(body, (str, bytes)):
        return {"content": body}
    return {"content": as_async_stream(body)}


def _transport_error(exc: httpx.HTTPError) -> TransportError:
    return TransportError(str(exc) or type(exc).__name__, category=categorize_exception(exc))


class HttpxTransport(Transport):
    """Asynchronous httpx client wrapper with a streamed response body."""

    def __init__(self, settings: RequestSettings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or load_request_settings()
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Deadlines come from the cancel signal, not from httpx timeouts.
            self._client = httpx.AsyncClient(
                follow_redirects=self.settings.follow_redirects,
                timeout=None,
                verify=self.settings.verify_ssl,
            )
        return self._client

    async def call(self, url: str, options: RequestOptions, signal: CancelSignal) -> Response:
        headers = dict(options.headers or {})
        headers.setdefault("user-agent", self.settings.user_agent)
        if isinstance(options.body, MultipartForm):
            # httpx writes its own boundary header for multipart bodies.
            headers.pop("content-type", None)

        try:
            request = self.client.build_request(
                options.method or "GET",
                url,
                headers=headers,
                **_content_kwargs(options.body),
            )
            resp = await run_cancellable(self.client.send(request, stream=True), signal)
        except httpx.HTTPError as exc:
            raise _transport_error(exc) from exc

        return Response(
            status=resp.status_code,
            headers=normalize_headers(resp.headers),
            body=self._iter_body(resp, signal),
            reason=resp.reason_phrase,
            url=str(resp.url),
            response_type=options.response_type or "json",
        )

    async def _iter_body(self, resp: httpx.Response, signal: CancelSignal) -> AsyncIterator[bytes]:
        try:
            async for chunk in resp.aiter_bytes():
                if signal.cancelled:
                    raise AbortedError(reason=signal.reason)
                if chunk:
                    yield chunk
        except httpx.HTTPError as exc:
            raise _transport_error(exc) from exc
        finally:
            await resp.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class HttpxUploadTransport:
    """
    Event-driven upload over httpx.

    The request body is fed to httpx in `upload_chunk_bytes` chunks. A chunk counts as
    sent once httpx asks for the next one, which is when `on_upload_progress` fires.
    """

    def __init__(self, settings: RequestSettings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or load_request_settings()
        self._client = client
        self.timeout: float = 0
        self.status = 0
        self.reason = ""
        self.response_text = ""
        self.raw_headers = ""
        self.on_upload_progress: Callable[[int, int | None], Any] | None = None
        self.on_load: Callable[[], Any] | None = None
        self.on_timeout: Callable[[], Any] | None = None
        self.on_abort: Callable[[], Any] | None = None
        self.on_error: Callable[[BaseException | None], Any] | None = None
        self._method = "POST"
        self._url = ""
        self._headers: dict[str, str] = {}
        self._task: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._timed_out = False
        self._aborted = False

    def open(self, method: str, url: str) -> None:
        self._method = method
        self._url = url

    def set_request_header(self, name: str, value: str) -> None:
        self._headers[name] = value

    def send(self, body: Any = None) -> None:
        if self._task is not None:
            raise RuntimeError("send() may only be called once")
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(body))
        if self.timeout:
            self._timer = loop.call_later(self.timeout / 1000, self._expire)

    def abort(self) -> None:
        if self._task is None or self._task.done():
            return
        self._aborted = True
        self._task.cancel()

    def _expire(self) -> None:
        if self._task is not None and not self._task.done():
            self._timed_out = True
            self._task.cancel()

    def _payload(self, body: Any) -> tuple[bytes | None, dict[str, str]]:
        extra: dict[str, str] = {}
        if body is None:
            return None, extra
        if isinstance(body, MultipartForm):
            content, content_type = body.encode()
            extra["content-type"] = content_type
            return content, extra
        if isinstance(body, str):
            return body.encode("utf-8"), extra
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body), extra
        return None, extra

    async def _chunks(self, content: bytes) -> AsyncIterator[bytes]:
        total = len(content)
        size = self.settings.upload_chunk_bytes
        sent = 0
        while sent < total:
            chunk = content[sent:sent + size]
            yield chunk
            sent += len(chunk)
            self._fire(self.on_upload_progress, sent, total)

    async def _stream(self, body: Any) -> AsyncIterator[bytes]:
        sent = 0
        async for chunk in as_async_stream(body):
            yield chunk
            sent += len(chunk)
            self._fire(self.on_upload_progress, sent, None)

    async def _exchange(self, body: Any) -> httpx.Response:
        content, extra_headers = self._payload(body)
        headers = {**self._headers, **extra_headers}
        headers.setdefault("user-agent", self.settings.user_agent)
        if content is not None:
            stream = self._chunks(content)
            headers["content-length"] = str(len(content))
        elif body is not None:
            stream = self._stream(body)
        else:
            stream = None

        if self._client is not None:
            return await self._client.request(self._method, self._url, headers=headers, content=stream)
        async with httpx.AsyncClient(
            follow_redirects=self.settings.follow_redirects,
            timeout=None,
            verify=self.settings.verify_ssl,
        ) as client:
            response = await client.request(self._method, self._url, headers=headers, content=stream)
        return response

    async def _run(self, body: Any) -> None:
        try:
            response = await self._exchange(body)
        except asyncio.CancelledError:
            if self._timed_out:
                self._fire(self.on_timeout)
                return
            if self._aborted:
                self._fire(self.on_abort)
                return
            raise
        except Exception as exc:
            # A failing progress handler ends up here too.
            logger.debug("Upload to %s failed: %r", self._url, exc)
            self._fire(self.on_error, exc)
            return
        finally:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

        self.status = response.status_code
        self.reason = response.reason_phrase
        self.response_text = response.text
        self.raw_headers = "\r\n".join(f"{name}: {value}" for name, value in response.headers.items())
        self._fire(self.on_load)

    @staticmethod
    def _fire(handler: Callable[..., Any] | None, *args: Any) -> None:
        if handler is not None:
            handler(*args)
