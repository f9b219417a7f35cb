# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Retry loop with body replay for single-attempt transport calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .body import ReplayableBody
from .cancellation import CancellationDecision, CancelSignal, cancellable_sleep, decision_for
from .errors import AbortedError, BodyNotReplayableError, UserCancelledError
from .http.models import Response, RetryPolicy

logger = logging.getLogger(__name__)

AttemptFn = Callable[[Any], Awaitable[Response]]


async def execute(
    attempt_fn: AttemptFn,
    policy: RetryPolicy,
    body: ReplayableBody | None = None,
    *,
    signal: CancelSignal | None = None,
) -> Response:
    """
    Run `attempt_fn` until it succeeds or the attempt budget is spent.

    Attempts are numbered 0..policy.retries. User cancellation and deadline expiry are
    never retried. Transport errors are retried after `policy.delay_for()` ms and the
    last one is re-raised once no attempts remain. Every attempt after the first gets
    a fresh copy of the body; a consumed stream body fails with BodyNotReplayableError.
    """
    attempt = 0
    final_attempt = policy.attempts - 1
    last_error: Exception | None = None

    while attempt <= final_attempt:
        if body is None:
            current = None
        else:
            try:
                current = body.for_attempt(attempt)
            except BodyNotReplayableError as exc:
                raise exc from last_error

        try:
            response = await attempt_fn(current)
        except Exception as exc:
            last_error = exc
            decision = decision_for(exc)
            if decision is not CancellationDecision.TRANSPORT_ERROR:
                logger.debug("Attempt %d ended with %s; not retrying", attempt + 1, decision.value)
                raise
            if attempt >= final_attempt:
                if attempt:
                    logger.debug("Retries exhausted after %d attempts: %s", attempt + 1, exc)
                raise

            delay = policy.delay_for(attempt + 1)
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.0f ms",
                attempt + 1,
                policy.attempts,
                exc,
                delay,
            )
            try:
                await cancellable_sleep(delay, signal)
            except AbortedError as abort:
                raise UserCancelledError("Request aborted by user") from abort
            attempt += 1
            continue

        if attempt:
            response.meta["retry_count"] = attempt
        return response

    raise last_error  # pragma: no cover - loop always returns or raises


__all__ = ["AttemptFn", "execute"]
