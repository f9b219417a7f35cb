# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Progress-reporting download and upload paths."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator
from typing import Any

from .cancellation import compose, iterate_cancellable, run_cancellable
from .errors import (
    ErrorCategory,
    TransportError,
    UploadAbortError,
    UploadNetworkError,
    UploadTimeoutError,
)
from .http.client import Transport, UploadTransportFactory
from .http.headers import content_length, parse_raw_headers
from .http.models import ProgressCallback, ProgressEvent, RequestOptions, Response

logger = logging.getLogger(__name__)


class StreamTee:
    """
    Split one async byte stream into two independently readable copies.

    A single pull from the source feeds both copies, so each sees every chunk exactly
    once and in order. Chunks a copy has not read yet stay buffered for it. A source
    error, or `abort()`, is raised from both copies once their buffers drain.
    """

    def __init__(self, source: AsyncIterator[bytes]):
        self._source = source.__aiter__()
        self._buffers: tuple[deque[bytes], deque[bytes]] = (deque(), deque())
        self._lock = asyncio.Lock()
        self._done = False
        self._error: BaseException | None = None
        self.first = self._branch(0)
        self.second = self._branch(1)

    async def _pull(self, index: int) -> None:
        async with self._lock:
            # The other copy may have pulled while we waited for the lock.
            if self._buffers[index] or self._done:
                return
            try:
                chunk = await self._source.__anext__()
            except StopAsyncIteration:
                self._done = True
                return
            except Exception as exc:
                self._error = exc
                self._done = True
                return
            for buffer in self._buffers:
                buffer.append(chunk)

    async def _branch(self, index: int) -> AsyncIterator[bytes]:
        buffer = self._buffers[index]
        while True:
            if buffer:
                yield buffer.popleft()
                continue
            if self._done:
                if self._error is not None:
                    raise self._error
                return
            await self._pull(index)

    async def abort(self, error: BaseException) -> None:
        """Fail both copies with `error` and close the source."""
        if self._error is None:
            self._error = error
        self._done = True
        for buffer in self._buffers:
            buffer.clear()
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


def tee(stream: AsyncIterator[bytes]) -> tuple[AsyncIterator[bytes], AsyncIterator[bytes]]:
    """Return two independent copies of `stream`."""
    split = StreamTee(stream)
    return split.first, split.second


async def download_with_progress(
    transport: Transport,
    url: str,
    options: RequestOptions,
    on_progress: ProgressCallback,
) -> Response:
    """
    Fetch `url` once and report download progress chunk by chunk.

    The body is teed: one copy is drained here to emit a ProgressEvent per chunk, the
    other is returned to the caller untouched in a new Response. The deadline covers
    the whole transfer, including the drain.
    """
    with compose(options.signal, options.timeout) as composed:
        split: StreamTee | None = None
        try:
            response = await run_cancellable(transport.call(url, options, composed.signal), composed.signal)
            if not response.ok or response.body is None:
                await response.aclose()
                raise TransportError(
                    f"HTTP error {response.status}",
                    category=ErrorCategory.HTTP_ERROR,
                    status=response.status,
                )
            total = content_length(response.headers)
            split = StreamTee(response.body)
            received = 0
            async for chunk in iterate_cancellable(split.first, composed.signal):
                received += len(chunk)
                on_progress(ProgressEvent.build(received, total))
        except Exception as exc:
            classified = composed.classify(exc)
            if split is not None:
                await split.abort(classified)
            if classified is exc:
                raise
            raise classified from exc

    logger.debug("Downloaded %d bytes from %s", received, url)
    return Response(
        status=response.status,
        headers=dict(response.headers),
        body=split.second,
        reason=response.reason,
        url=response.url or url,
        response_type=response.response_type,
        meta=dict(response.meta),
    )


async def upload_with_progress(
    transport_factory: UploadTransportFactory,
    url: str,
    options: RequestOptions,
    on_progress: ProgressCallback,
) -> Response:
    """
    Send the (already encoded) body through an event-driven upload transport.

    Progress is reported whenever the transport flushes bytes and the total is known.
    A user cancel settles the upload with UploadAbortError straight away, whether or
    not the transport later reports its own abort.
    """
    loop = asyncio.get_running_loop()
    outcome: asyncio.Future[Response] = loop.create_future()
    transport = transport_factory()
    transport.timeout = options.timeout or 0

    def resolve(response: Response) -> None:
        if not outcome.done():
            outcome.set_result(response)

    def reject(error: BaseException) -> None:
        if not outcome.done():
            outcome.set_exception(error)

    def handle_progress(loaded: int, total: int | None) -> None:
        if total:
            on_progress(ProgressEvent.build(loaded, total))

    def handle_load() -> None:
        resolve(
            Response.from_text(
                transport.response_text,
                status=transport.status,
                headers=parse_raw_headers(transport.raw_headers),
                reason=transport.reason,
                url=url,
                response_type=options.response_type or "json",
            )
        )

    def handle_error(exc: BaseException | None = None) -> None:
        error = UploadNetworkError("Network Error", transport=transport)
        error.__cause__ = exc
        reject(error)

    def user_abort() -> None:
        reject(UploadAbortError("Request aborted by user", transport=transport))
        transport.abort()

    transport.on_upload_progress = handle_progress
    transport.on_load = handle_load
    transport.on_timeout = lambda: reject(UploadTimeoutError("Request timed out", transport=transport))
    transport.on_abort = lambda: reject(UploadAbortError("Request aborted by user", transport=transport))
    transport.on_error = handle_error

    signal = options.signal
    listener: int | None = None
    try:
        transport.open(options.method or "POST", url)
        for name, value in (options.headers or {}).items():
            transport.set_request_header(name, value)

        if signal is not None and signal.cancelled:
            user_abort()
        else:
            if signal is not None:
                listener = signal.add_listener(user_abort)
            try:
                transport.send(options.body)
            except Exception as exc:  # noqa: BLE001
                handle_error(exc)
        return await outcome
    finally:
        if signal is not None:
            signal.remove_listener(listener)
        if not outcome.done():
            transport.abort()


__all__ = ["StreamTee", "download_with_progress", "tee", "upload_with_progress"]
