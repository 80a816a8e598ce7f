"""Tests for retry and fallback strategies and the recovery manager."""

import random

import pytest

from seller_mcp.services.circuit_breaker import CircuitBreakerStrategy
from seller_mcp.services.errors import ErrorKind, SellerApiError
from seller_mcp.services.manager import (
    ErrorRecoveryManager,
    create_default_recovery_manager,
)
from seller_mcp.services.recovery import (
    FallbackStrategy,
    RecoveryContext,
    RetryStrategy,
)


def server_error(message: str = "Server error: 503") -> SellerApiError:
    return SellerApiError(ErrorKind.SERVER, message)


class FlakyOperation:
    """Fails with the given errors in order, then returns result."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestRetryStrategy:
    """Tests for RetryStrategy."""

    @pytest.mark.parametrize(
        "kind,expected",
        [
            (ErrorKind.NETWORK, True),
            (ErrorKind.SERVER, True),
            (ErrorKind.RATE_LIMIT_EXCEEDED, True),
            (ErrorKind.THROTTLING, True),
            (ErrorKind.AUTHENTICATION, False),
            (ErrorKind.VALIDATION, False),
            (ErrorKind.RESOURCE_NOT_FOUND, False),
            (ErrorKind.CIRCUIT_OPEN, False),
        ],
    )
    def test_can_recover(self, kind, expected):
        assert RetryStrategy().can_recover(SellerApiError(kind, "x")) is expected

    def test_foreign_exceptions_not_recoverable(self):
        assert RetryStrategy().can_recover(ValueError("x")) is False

    @pytest.mark.parametrize("attempt", [0, 1, 2, 3, 4])
    def test_backoff_bounds(self, attempt):
        """Delay at attempt k lies in [base*2^k, base*2^k*1.25]."""
        strategy = RetryStrategy(base_delay_ms=100, rng=random.Random(attempt))
        delay = strategy.get_delay_ms(server_error(), attempt)
        expected = 100 * 2**attempt
        assert expected <= delay <= expected * 1.25

    def test_backoff_capped(self):
        """Exponential growth stops at max_delay_ms (plus jitter)."""
        strategy = RetryStrategy(base_delay_ms=1000, max_delay_ms=5000)
        for _ in range(20):
            delay = strategy.get_delay_ms(server_error(), 10)
            assert 5000 <= delay <= 5000 * 1.25

    def test_rate_limit_uses_retry_after_verbatim(self):
        strategy = RetryStrategy(base_delay_ms=100)
        error = SellerApiError.rate_limited("Rate limit exceeded: x", 4000)
        assert strategy.get_delay_ms(error, 2) == 4000

    def test_throttling_uses_retry_after_verbatim(self):
        strategy = RetryStrategy(base_delay_ms=100)
        error = SellerApiError.throttled("Throttling error: x", 1500)
        assert strategy.get_delay_ms(error, 0) == 1500

    @pytest.mark.asyncio
    async def test_succeeds_on_third_call(self, fake_sleep):
        """Two failures then success: result returned after >= 300ms of waiting."""
        strategy = RetryStrategy(max_retries=2, base_delay_ms=100, sleep=fake_sleep)
        operation = FlakyOperation([server_error(), server_error()], result=42)

        with pytest.raises(SellerApiError) as exc_info:
            await operation()
        result = await strategy.recover(
            exc_info.value, RecoveryContext(operation=operation)
        )

        assert result == 42
        assert operation.calls == 3
        assert len(fake_sleep.delays) == 2
        assert fake_sleep.total >= 0.3

    @pytest.mark.asyncio
    async def test_exhausted_rethrows_without_invoking(self, fake_sleep):
        """retry_count >= max_retries re-raises the original error immediately."""
        strategy = RetryStrategy(max_retries=3, sleep=fake_sleep)
        operation = FlakyOperation([])
        error = server_error()

        with pytest.raises(SellerApiError) as exc_info:
            await strategy.recover(error, RecoveryContext(operation=operation, retry_count=3))

        assert exc_info.value is error
        assert operation.calls == 0
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, fake_sleep):
        """Exactly max_retries further attempts are made, then the last error surfaces."""
        strategy = RetryStrategy(max_retries=2, base_delay_ms=10, sleep=fake_sleep)
        errors = [server_error(f"Server error: {i}") for i in range(5)]
        operation = FlakyOperation(errors[1:])

        with pytest.raises(SellerApiError) as exc_info:
            await strategy.recover(errors[0], RecoveryContext(operation=operation))

        assert operation.calls == 2
        assert exc_info.value is errors[2]

    @pytest.mark.asyncio
    async def test_non_recoverable_failure_propagates(self, fake_sleep):
        """A retry that fails with an unrelated kind stops retrying."""
        strategy = RetryStrategy(max_retries=5, sleep=fake_sleep)
        auth_error = SellerApiError(ErrorKind.AUTHENTICATION, "Authentication failed: x")
        operation = FlakyOperation([auth_error])

        with pytest.raises(SellerApiError) as exc_info:
            await strategy.recover(server_error(), RecoveryContext(operation=operation))

        assert exc_info.value is auth_error
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_waits_for_retry_after(self, fake_sleep):
        strategy = RetryStrategy(sleep=fake_sleep)
        operation = FlakyOperation([])
        error = SellerApiError.rate_limited("Rate limit exceeded: x", 3000)

        assert await strategy.recover(error, RecoveryContext(operation=operation)) == "ok"
        assert fake_sleep.delays == [3.0]


class TestFallbackStrategy:
    """Tests for FallbackStrategy."""

    def test_can_recover_listed_kinds_only(self):
        strategy = FallbackStrategy(lambda e, c: None, [ErrorKind.RESOURCE_NOT_FOUND])
        assert strategy.can_recover(SellerApiError(ErrorKind.RESOURCE_NOT_FOUND, "x"))
        assert not strategy.can_recover(server_error())
        assert not strategy.can_recover(KeyError("x"))

    def test_no_kinds_recovers_nothing(self):
        assert not FallbackStrategy(lambda e, c: None).can_recover(server_error())

    @pytest.mark.asyncio
    async def test_returns_fallback_without_retry(self):
        """The fallback result is returned and the operation is not re-run."""
        seen = []

        def fallback(error, context):
            seen.append((error, context.params))
            return {"items": []}

        strategy = FallbackStrategy(fallback, [ErrorKind.RESOURCE_NOT_FOUND])
        operation = FlakyOperation([])
        error = SellerApiError(ErrorKind.RESOURCE_NOT_FOUND, "Resource not found: sku")

        result = await strategy.recover(
            error, RecoveryContext(operation=operation, params={"sku": "A1"})
        )

        assert result == {"items": []}
        assert operation.calls == 0
        assert seen == [(error, {"sku": "A1"})]

    @pytest.mark.asyncio
    async def test_async_fallback_awaited(self):
        async def fallback(error, context):
            return "cached copy"

        strategy = FallbackStrategy(fallback, [ErrorKind.SERVER])
        result = await strategy.recover(
            server_error(), RecoveryContext(operation=FlakyOperation([]))
        )
        assert result == "cached copy"


class TestErrorRecoveryManager:
    """Tests for ErrorRecoveryManager."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        manager = ErrorRecoveryManager([RetryStrategy()])
        assert await manager.execute_with_recovery(FlakyOperation([], "done")) == "done"

    @pytest.mark.asyncio
    async def test_no_matching_strategy_rethrows_unchanged(self):
        manager = ErrorRecoveryManager([RetryStrategy()])
        error = SellerApiError(ErrorKind.VALIDATION, "Validation error: bad")
        operation = FlakyOperation([error])

        with pytest.raises(SellerApiError) as exc_info:
            await manager.execute_with_recovery(operation)

        assert exc_info.value is error
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_foreign_exceptions_rethrown(self):
        manager = create_default_recovery_manager()
        with pytest.raises(ZeroDivisionError):
            await manager.execute_with_recovery(FlakyOperation([ZeroDivisionError()]))

    @pytest.mark.asyncio
    async def test_first_matching_strategy_wins(self, fake_sleep):
        """Strategies are consulted in insertion order."""
        fallback = FallbackStrategy(lambda e, c: "fallback", [ErrorKind.SERVER])
        retry = RetryStrategy(sleep=fake_sleep)
        operation = FlakyOperation([server_error()])

        manager = ErrorRecoveryManager([fallback])
        manager.add_strategy(retry)
        assert await manager.execute_with_recovery(operation) == "fallback"
        assert operation.calls == 1

        operation = FlakyOperation([server_error()])
        manager = ErrorRecoveryManager([retry, fallback])
        assert await manager.execute_with_recovery(operation) == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_context_forwarded(self):
        """retry_count seeds the context; other keys become params."""
        captured = []

        def fallback(error, context):
            captured.append(context)
            return None

        manager = ErrorRecoveryManager([FallbackStrategy(fallback, [ErrorKind.SERVER])])
        operation = FlakyOperation([server_error()])
        await manager.execute_with_recovery(
            operation, {"retry_count": 1, "path": "/orders"}
        )

        context = captured[0]
        assert context.retry_count == 1
        assert context.params == {"path": "/orders"}
        assert context.operation is operation

    @pytest.mark.asyncio
    async def test_retry_owns_whole_sequence(self, fake_sleep, clock):
        """Retryable failures never reach the breaker while retries remain."""
        breaker = CircuitBreakerStrategy(failure_threshold=1, clock=clock)
        manager = ErrorRecoveryManager(
            [RetryStrategy(max_retries=3, base_delay_ms=10, sleep=fake_sleep), breaker]
        )
        operation = FlakyOperation([server_error(), server_error(), server_error()])

        assert await manager.execute_with_recovery(operation) == "ok"
        assert breaker.failure_count == 0

    def test_default_manager_order(self):
        strategies = create_default_recovery_manager().strategies
        assert [type(s) for s in strategies] == [RetryStrategy, CircuitBreakerStrategy]
