# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Cooperative cancellation signals and deadline composition.

A CancelSignal is a one-shot flag: the first cancel wins, later ones are ignored.
`compose()` merges a caller's signal with a deadline timer into one derived signal
and remembers which source fired so failures can be reported as a user cancel or a
timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from .errors import (
    AbortedError,
    DeadlineExceededError,
    ErrorKind,
    UserCancelledError,
    error_kind,
    is_abort_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelSignal:
    """Read side of a cancellation flag."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Any = None
        self._listeners: dict[int, Callable[[], Any]] = {}
        self._next_handle = 0
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Any:
        return self._reason

    def add_listener(self, callback: Callable[[], Any]) -> int:
        """Register a callback fired once on cancellation. Returns a removal handle."""
        handle = self._next_handle
        self._next_handle += 1
        if not self._cancelled:
            self._listeners[handle] = callback
        return handle

    def remove_listener(self, handle: int | None) -> None:
        if handle is not None:
            self._listeners.pop(handle, None)

    def listener_count(self) -> int:
        return len(self._listeners)

    async def wait(self) -> None:
        """Block until the signal is cancelled."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

    def _cancel(self, reason: Any = None) -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        listeners = list(self._listeners.values())
        self._listeners.clear()
        if self._event is not None:
            self._event.set()
        for callback in listeners:
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.exception("Cancellation listener %r failed", callback)
        return True


class CancelController:
    """Write side of a CancelSignal."""

    def __init__(self) -> None:
        self.signal = CancelSignal()

    def cancel(self, reason: Any = None) -> bool:
        """Cancel the signal; only the first call has any effect."""
        return self.signal._cancel(reason)


class CancellationDecision(str, Enum):
    USER_CANCELLED = "USER_CANCELLED"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


def decision_for(exc: BaseException) -> CancellationDecision:
    """Retry-relevant classification of a failed attempt."""
    kind = error_kind(exc)
    if kind is ErrorKind.USER_CANCELLED:
        return CancellationDecision.USER_CANCELLED
    if kind is ErrorKind.DEADLINE_EXCEEDED:
        return CancellationDecision.DEADLINE_EXCEEDED
    return CancellationDecision.TRANSPORT_ERROR


class ComposedCancellation:
    """
    Derived signal fed by a user signal and a deadline timer.

    Use as a context manager (or call `close()`) so the timer is cancelled and the
    user-signal listener detached on every exit path.
    """

    def __init__(self, user_signal: CancelSignal | None, timeout_ms: float | None):
        self.user_signal = user_signal
        self._controller = CancelController()
        self._timer: asyncio.TimerHandle | None = None
        self._listener: int | None = None
        self.source: CancellationDecision | None = None

        if user_signal is not None and user_signal.cancelled:
            self._fire(CancellationDecision.USER_CANCELLED)
            return
        if user_signal is not None:
            self._listener = user_signal.add_listener(lambda: self._fire(CancellationDecision.USER_CANCELLED))
        if timeout_ms:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(timeout_ms / 1000, self._fire, CancellationDecision.DEADLINE_EXCEEDED)

    @property
    def signal(self) -> CancelSignal:
        return self._controller.signal

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def _fire(self, source: CancellationDecision) -> None:
        if self._controller.cancel(source):
            self.source = source
            logger.debug("Request cancelled: %s", source.value)

    def classify(self, exc: BaseException) -> BaseException:
        """
        Map an abort observed under the derived signal to a user cancel or a timeout.

        Non-abort exceptions are returned unchanged.
        """
        if not is_abort_error(exc):
            return exc
        if self.source is not None:
            user_cancelled = self.source is CancellationDecision.USER_CANCELLED
        else:
            user_cancelled = self.user_signal is not None and self.user_signal.cancelled
        if user_cancelled:
            return UserCancelledError("Request aborted by user")
        return DeadlineExceededError("Request timed out")

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.user_signal is not None:
            self.user_signal.remove_listener(self._listener)
            self._listener = None

    def __enter__(self) -> ComposedCancellation:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()


def compose(user_signal: CancelSignal | None, timeout_ms: float | None) -> ComposedCancellation:
    """Merge a caller signal and a deadline into one derived signal."""
    return ComposedCancellation(user_signal, timeout_ms)


async def run_cancellable(awaitable: Awaitable[T], signal: CancelSignal) -> T:
    """
    Await `awaitable` unless `signal` fires first.

    On cancellation the inner task is cancelled and AbortedError is raised, so callees
    that never look at the signal still stop at their next suspension point.
    """
    if signal.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise AbortedError(reason=signal.reason)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    interrupted = False
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            interrupted = True
            task.cancel()
            await asyncio.wait({task})
            if not task.cancelled():
                # Consume the late outcome so it is not reported as unretrieved.
                task.exception()

    # A task that swallowed its cancellation still counts as aborted.
    if interrupted or task.cancelled():
        raise AbortedError(reason=signal.reason)
    return task.result()


_END = object()


async def _next_item(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


async def iterate_cancellable(stream: AsyncIterator[T], signal: CancelSignal) -> AsyncIterator[T]:
    """Iterate `stream`, aborting a pending read as soon as `signal` fires."""
    iterator = stream.__aiter__()
    while True:
        item = await run_cancellable(_next_item(iterator), signal)
        if item is _END:
            return
        yield item


async def cancellable_sleep(delay_ms: float, signal: CancelSignal | None) -> None:
    """Sleep for `delay_ms`; raises AbortedError if `signal` fires first."""
    if signal is None:
        await asyncio.sleep(delay_ms / 1000)
        return
    await run_cancellable(asyncio.sleep(delay_ms / 1000), signal)


__all__ = [
    "CancelController",
    "CancelSignal",
    "CancellationDecision",
    "ComposedCancellation",
    "cancellable_sleep",
    "compose",
    "decision_for",
    "iterate_cancellable",
    "run_cancellable",
]
