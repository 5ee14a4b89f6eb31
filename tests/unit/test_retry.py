"""
Unit Tests for Collaborator Retries

Tests for RetryPolicy backoff and call_collaborator timeouts/retries.
"""

import asyncio

import pytest

from autoflow_core.actions import RetryPolicy
from autoflow_core.actions.retry import call_collaborator
from autoflow_core.config import RetryConfig
from autoflow_core.errors import CollaboratorError, CollaboratorTimeoutError


class _Flaky:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class _Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, base_delay_s=0.5, max_delay_s=1.0, multiplier=2.0)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delay_is_capped(self, policy):
        assert policy.get_delay(1) == 0.5
        assert policy.get_delay(2) == 1.0
        assert policy.get_delay(3) == 1.0

    def test_from_config(self):
        policy = RetryPolicy.from_config(RetryConfig(max_attempts=5, base_delay_s=0.1))

        assert policy.max_attempts == 5
        assert policy.base_delay_s == 0.1


class TestCallCollaborator:
    """Tests for call_collaborator."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, policy):
        call = _Flaky()

        result = await call_collaborator("op", call, timeout_s=1, policy=policy, idempotent=True)

        assert result == "ok"
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_retryable_error_is_retried(self, policy):
        call = _Flaky(CollaboratorError("503", retryable=True))
        sleeps = _Sleeps()

        result = await call_collaborator(
            "op", call, timeout_s=1, policy=policy, idempotent=True, sleep=sleeps,
        )

        assert result == "ok"
        assert call.calls == 2
        assert sleeps.delays == [0.5]

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self, policy):
        call = _Flaky(*[CollaboratorError("503", retryable=True) for _ in range(5)])

        with pytest.raises(CollaboratorError):
            await call_collaborator(
                "op", call, timeout_s=1, policy=policy, idempotent=True, sleep=_Sleeps(),
            )

        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, policy):
        call = _Flaky(CollaboratorError("400 bad request", retryable=False))

        with pytest.raises(CollaboratorError):
            await call_collaborator(
                "op", call, timeout_s=1, policy=policy, idempotent=True, sleep=_Sleeps(),
            )

        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_non_idempotent_call_runs_once(self, policy):
        call = _Flaky(CollaboratorError("503", retryable=True))

        with pytest.raises(CollaboratorError):
            await call_collaborator(
                "op", call, timeout_s=1, policy=policy, idempotent=False, sleep=_Sleeps(),
            )

        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_raises_timeout_error(self):
        async def slow():
            await asyncio.sleep(1)

        policy = RetryPolicy(max_attempts=2, base_delay_s=0.0)

        with pytest.raises(CollaboratorTimeoutError) as exc_info:
            await call_collaborator(
                "ai.complete", slow, timeout_s=0.01, policy=policy, idempotent=True, sleep=_Sleeps(),
            )

        assert exc_info.value.code == "TIMEOUT"
        assert exc_info.value.retryable
