# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Transport abstractions and factories."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from ..config import RequestSettings, load_request_settings
from .models import RequestOptions, Response

if TYPE_CHECKING:
    from ..cancellation import CancelSignal


class Transport(Protocol):
    """One request/response exchange. Raises AbortedError once `signal` fires."""

    async def call(self, url: str, options: RequestOptions, signal: CancelSignal) -> Response: ...

    async def aclose(self) -> None:  # pragma: no cover - optional for adapters
        ...


class UploadTransport(Protocol):
    """
    Event-driven transport used for uploads with progress reporting.

    `send()` starts the exchange and returns immediately. Exactly one of `on_load`,
    `on_timeout`, `on_abort` or `on_error` fires when it ends. `timeout` is in ms;
    0 disables it.
    """

    timeout: float
    status: int
    reason: str
    response_text: str
    raw_headers: str
    on_upload_progress: Callable[[int, int | None], Any] | None
    on_load: Callable[[], Any] | None
    on_timeout: Callable[[], Any] | None
    on_abort: Callable[[], Any] | None
    on_error: Callable[[BaseException | None], Any] | None

    def open(self, method: str, url: str) -> None: ...

    def set_request_header(self, name: str, value: str) -> None: ...

    def send(self, body: Any = None) -> None: ...

    def abort(self) -> None: ...


UploadTransportFactory = Callable[[], UploadTransport]


def create_default_transport(settings: RequestSettings | None = None) -> Transport:
    """Factory for the default httpx-backed transport."""
    from .httpx_client import HttpxTransport

    return HttpxTransport(settings or load_request_settings())


def create_default_upload_transport_factory(settings: RequestSettings | None = None) -> UploadTransportFactory:
    """Factory producing one httpx-backed upload transport per upload."""
    from .httpx_client import HttpxUploadTransport

    resolved = settings or load_request_settings()
    return lambda: HttpxUploadTransport(resolved)
