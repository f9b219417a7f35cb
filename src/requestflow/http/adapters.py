# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Adapters that put plain callables and canned responses behind the Transport protocol."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import TransportError
from ..interceptors import maybe_await
from .client import Transport
from .models import RequestOptions, Response

if TYPE_CHECKING:
    from ..cancellation import CancelSignal

TransportFn = Callable[[str, RequestOptions, "CancelSignal"], "Awaitable[Response] | Response"]


class FunctionTransport(Transport):
    """Adapter for a bare `transport(url, options, signal)` function (sync or async)."""

    def __init__(self, fn: TransportFn):
        self._fn = fn

    async def call(self, url: str, options: RequestOptions, signal: CancelSignal) -> Response:
        return await maybe_await(self._fn(url, options, signal))

    async def aclose(self) -> None:
        return None


def as_transport(transport: Transport | TransportFn) -> Transport:
    """Accept either a Transport or a bare transport function."""
    if hasattr(transport, "call"):
        return transport  # type: ignore[return-value]
    if callable(transport):
        return FunctionTransport(transport)
    raise TypeError(f"Not a transport: {transport!r}")


@dataclass
class StubCall:
    url: str
    options: RequestOptions
    signal: Any


class StubTransport(Transport):
    """
    Deterministic, programmable Transport for tests.

    Each URL maps to a Response, an exception to raise, or a callable
    `(url, options, signal)` returning either.
    """

    def __init__(self, responses: dict[str, Any] | None = None):
        self._responses = dict(responses or {})
        self.requests: list[StubCall] = []

    def add(self, url: str, response: Any) -> None:
        self._responses[url] = response

    async def call(self, url: str, options: RequestOptions, signal: CancelSignal) -> Response:
        self.requests.append(StubCall(url=url, options=options, signal=signal))
        if url not in self._responses:
            raise TransportError(f"No stubbed response configured for {url}")
        outcome = self._responses[url]
        if callable(outcome) and not isinstance(outcome, Response):
            outcome = await maybe_await(outcome(url, options, signal))
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        return None


__all__ = ["FunctionTransport", "StubCall", "StubTransport", "TransportFn", "as_transport"]
