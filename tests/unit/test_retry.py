# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

import asyncio
import io
import time

import pytest

from requestflow.body import BodyKind, ReplayableBody
from requestflow.cancellation import CancelController
from requestflow.errors import (
    BodyNotReplayableError,
    DeadlineExceededError,
    TransportError,
    UserCancelledError,
)
from requestflow.http.models import Response, RetryPolicy
from requestflow.retry import execute


class SequenceAttempts:
    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.bodies: list[object] = []
        self.times: list[float] = []

    @property
    def calls(self) -> int:
        return len(self.bodies)

    async def __call__(self, body):
        self.bodies.append(body)
        self.times.append(time.monotonic())
        outcome = self._outcomes[min(self.calls - 1, len(self._outcomes) - 1)]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
@pytest.mark.parametrize("retries", [0, 1, 3])
async def test_failing_transport_runs_retries_plus_one_attempts(retries):
    errors = [TransportError(f"fail {i}") for i in range(retries + 1)]
    attempts = SequenceAttempts(errors)
    with pytest.raises(TransportError) as excinfo:
        await execute(attempts, RetryPolicy(retries=retries, retry_delay=1))
    assert attempts.calls == retries + 1
    assert excinfo.value is errors[-1]


@pytest.mark.asyncio
async def test_success_after_one_failure_waits_retry_delay():
    ok = Response(status=200)
    attempts = SequenceAttempts([TransportError("flaky"), ok, TransportError("unused")])
    result = await execute(attempts, RetryPolicy(retries=3, retry_delay=50))
    assert result is ok
    assert attempts.calls == 2
    assert attempts.times[1] - attempts.times[0] >= 0.045
    assert result.meta["retry_count"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [UserCancelledError("cancelled"), DeadlineExceededError("late")])
async def test_cancellation_errors_are_never_retried(error):
    attempts = SequenceAttempts([error, Response(status=200)])
    with pytest.raises(type(error)):
        await execute(attempts, RetryPolicy(retries=5, retry_delay=1))
    assert attempts.calls == 1


@pytest.mark.asyncio
async def test_foreign_exceptions_count_as_transport_errors():
    attempts = SequenceAttempts([ConnectionError("reset"), Response(status=204)])
    result = await execute(attempts, RetryPolicy(retries=1, retry_delay=1))
    assert result.status == 204
    assert attempts.calls == 2


@pytest.mark.asyncio
async def test_stream_body_is_not_replayed():
    stream = io.BytesIO(b"payload")
    attempts = SequenceAttempts([TransportError("boom"), Response(status=200)])
    with pytest.raises(BodyNotReplayableError) as excinfo:
        await execute(attempts, RetryPolicy(retries=2, retry_delay=1), ReplayableBody(BodyKind.STREAM, stream))
    assert attempts.calls == 1
    assert attempts.bodies == [stream]
    assert isinstance(excinfo.value.__cause__, TransportError)


@pytest.mark.asyncio
async def test_replayable_body_is_resent_on_every_attempt():
    attempts = SequenceAttempts([TransportError("a"), TransportError("b"), Response(status=200)])
    body = ReplayableBody(BodyKind.TEXT, '{"a":1}')
    await execute(attempts, RetryPolicy(retries=2, retry_delay=1), body)
    assert attempts.bodies == ['{"a":1}'] * 3


@pytest.mark.asyncio
async def test_backoff_callable_overrides_fixed_delay():
    seen: list[int] = []

    def backoff(attempt: int) -> float:
        seen.append(attempt)
        return 1

    attempts = SequenceAttempts([TransportError("a"), TransportError("b"), Response(status=200)])
    await execute(attempts, RetryPolicy(retries=2, retry_delay=10_000, backoff=backoff))
    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_user_cancel_during_retry_delay():
    controller = CancelController()
    attempts = SequenceAttempts([TransportError("boom"), Response(status=200)])
    asyncio.get_running_loop().call_later(0.02, controller.cancel)
    with pytest.raises(UserCancelledError):
        await execute(attempts, RetryPolicy(retries=1, retry_delay=10_000), signal=controller.signal)
    assert attempts.calls == 1


def test_retry_policy_attempts_and_clamping():
    assert RetryPolicy(retries=0).attempts == 1
    assert RetryPolicy(retries=-2).attempts == 1
    assert RetryPolicy(retries=2, retry_delay=-5).delay_for(1) == 0
