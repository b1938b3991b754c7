"""
Unit tests for the shared retry executor and policies.
"""

import random

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import (
    AuthError,
    CircuitOpenError,
    ClientError,
    NetworkError,
    PersistenceError,
    RateLimitedError,
    ServerError,
    ValidationError,
)
from shared.retry import (
    API_RETRY_POLICY,
    PERSISTENCE_RETRY_POLICY,
    RetryExecutor,
    RetryPolicy,
    api_retry_predicate,
    default_retry_predicate,
    persistence_retry_predicate,
)
from shared.test_helpers import FakeClock


class TestRetryPredicates:
    """Classification of errors into retryable and final."""

    @pytest.mark.parametrize("error", [
        NetworkError(),
        NetworkError(timeout=True),
        ServerError(500),
        ServerError(503),
        RateLimitedError(),
        httpx.ConnectError("refused"),
        ConnectionResetError(),
        TimeoutError(),
    ])
    def test_default_retries_transient_errors(self, error):
        assert default_retry_predicate(error) is True

    @pytest.mark.parametrize("error", [
        ClientError(400),
        ClientError(404),
        AuthError(401),
        AuthError(403),
        ValidationError(),
        CircuitOpenError("books"),
        KeyError("bug"),
    ])
    def test_default_rejects_final_errors(self, error):
        assert default_retry_predicate(error) is False

    def test_api_predicate_retries_gateway_statuses(self):
        error = MagicMock(spec=Exception)
        error.status_code = 502
        assert api_retry_predicate(error) is True
        assert api_retry_predicate(ClientError(418)) is False

    def test_persistence_predicate_is_narrower(self):
        assert persistence_retry_predicate(PersistenceError("down", connectivity=True)) is True
        assert persistence_retry_predicate(NetworkError()) is True
        assert persistence_retry_predicate(PersistenceError("constraint violated")) is False
        assert persistence_retry_predicate(ServerError(503)) is False
        assert persistence_retry_predicate(RateLimitedError()) is False
        assert persistence_retry_predicate(NetworkError(timeout=True)) is False


class TestRetryPolicy:
    """Policy configuration and backoff arithmetic."""

    def test_presets(self):
        assert (API_RETRY_POLICY.max_attempts, API_RETRY_POLICY.base_delay,
                API_RETRY_POLICY.max_delay, API_RETRY_POLICY.backoff_factor) == (3, 1.0, 8.0, 2.0)
        assert (PERSISTENCE_RETRY_POLICY.max_attempts, PERSISTENCE_RETRY_POLICY.base_delay,
                PERSISTENCE_RETRY_POLICY.max_delay, PERSISTENCE_RETRY_POLICY.backoff_factor) == (2, 2.0, 5.0, 1.5)

    def test_backoff_is_capped(self):
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=8.0, backoff_factor=2.0)
        assert [policy.backoff(attempt) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_policy_is_immutable(self):
        with pytest.raises(AttributeError):
            API_RETRY_POLICY.max_attempts = 10  # type: ignore[misc]

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(backoff_factor=0.5)


class TestRetryExecutor:
    """Test cases for RetryExecutor."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def executor(self, clock):
        return RetryExecutor(sleep=clock.sleep, rng=random.Random(7))

    @pytest.fixture
    def policy(self):
        return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=8.0, backoff_factor=2.0)

    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self, executor, policy, clock):
        operation = AsyncMock(side_effect=[ServerError(503), ServerError(503), "done"])
        on_retry = MagicMock()

        result = await executor.execute(operation, policy, on_retry=on_retry)

        assert result == "done"
        assert operation.await_count == 3
        assert on_retry.call_count == 2
        assert [call.args[0] for call in on_retry.call_args_list] == [1, 2]
        assert len(clock.sleeps) == 2

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_original_error(self, executor, policy):
        error = NetworkError("connection reset")
        operation = AsyncMock(side_effect=error)
        on_retry = MagicMock()

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute(operation, policy, on_retry=on_retry)

        assert exc_info.value is error
        assert exc_info.value.attempts == 3
        assert operation.await_count == 3
        assert on_retry.call_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self, executor, policy, clock):
        operation = AsyncMock(side_effect=ClientError(400))
        on_retry = MagicMock()

        with pytest.raises(ClientError) as exc_info:
            await executor.execute(operation, policy, on_retry=on_retry)

        assert exc_info.value.attempts == 1
        assert operation.await_count == 1
        on_retry.assert_not_called()
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_unknown_exceptions_are_not_retried(self, executor, policy):
        operation = AsyncMock(side_effect=KeyError("missing"))

        with pytest.raises(KeyError):
            await executor.execute(operation, policy)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_delays_follow_backoff_with_bounded_jitter(self, executor, clock):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=4.0, backoff_factor=2.0)
        operation = AsyncMock(side_effect=RateLimitedError())

        with pytest.raises(RateLimitedError):
            await executor.execute(operation, policy)

        expected = [1.0, 2.0, 4.0, 4.0]
        assert len(clock.sleeps) == len(expected)
        for slept, base in zip(clock.sleeps, expected):
            assert base <= slept <= base * 1.1

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_change_outcome(self, executor, policy):
        operation = AsyncMock(side_effect=[ServerError(500), "done"])
        on_retry = MagicMock(side_effect=RuntimeError("observer bug"))

        assert await executor.execute(operation, policy, on_retry=on_retry) == "done"
        on_retry.assert_called_once()

    @pytest.mark.asyncio
    async def test_custom_predicate(self, executor):
        policy = RetryPolicy(max_attempts=3, base_delay=0.0, retry_predicate=lambda error: isinstance(error, KeyError))
        operation = AsyncMock(side_effect=[KeyError("a"), "ok"])

        assert await executor.execute(operation, policy) == "ok"
