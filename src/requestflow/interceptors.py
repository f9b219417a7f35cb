# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Ordered interceptor registry with sequential async traversal."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

C = TypeVar("C", bound=Callable[..., Any])
V = TypeVar("V")

Apply = Callable[[C, V], "Awaitable[V | None] | V | None"]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _call(callback: Callable[[Any], Any], value: Any) -> Any:
    return callback(value)


class InterceptorChain(Generic[C]):
    """
    Registry of interceptor callbacks keyed by monotonically increasing ids.

    Ids are never reused. Traversal walks a snapshot of the ids taken when it starts
    and re-checks each id right before calling it, so a callback ejected mid-traversal
    is skipped if its turn has not come yet. Callbacks registered mid-traversal run
    from the next traversal on.
    """

    def __init__(self) -> None:
        self._callbacks: dict[int, C] = {}
        self._order: list[int] = []
        self._next_id = 0

    def register(self, callback: C) -> int:
        reg_id = self._next_id
        self._next_id += 1
        self._order.append(reg_id)
        self._callbacks[reg_id] = callback
        return reg_id

    def remove(self, reg_id: int) -> None:
        if reg_id not in self._callbacks:
            return
        del self._callbacks[reg_id]
        self._order.remove(reg_id)

    use = register
    eject = remove

    def size(self) -> int:
        return len(self._callbacks)

    def __len__(self) -> int:
        return self.size()

    def ids(self) -> list[int]:
        return list(self._order)

    async def run_forward(self, seed: V, apply: Apply | None = None) -> V:
        """Run callbacks in registration order; a None result keeps the current value."""
        return await self._run(list(self._order), seed, apply or _call)

    async def run_reverse(self, seed: V, apply: Apply | None = None) -> V:
        """Run callbacks in reverse registration order."""
        return await self._run(list(reversed(self._order)), seed, apply or _call)

    async def _run(self, order: list[int], seed: V, apply: Apply) -> V:
        value = seed
        for reg_id in order:
            callback = self._callbacks.get(reg_id)
            if callback is None:
                continue
            result = await maybe_await(apply(callback, value))
            if result is not None:
                value = result
        return value


__all__ = ["InterceptorChain", "maybe_await"]
