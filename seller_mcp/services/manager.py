"""
ErrorRecoveryManager - runs an operation and hands failures to recovery strategies.
"""

from typing import Any, TypeVar

from loguru import logger

from seller_mcp.services.circuit_breaker import CircuitBreakerStrategy
from seller_mcp.services.recovery import (
    Operation,
    RecoveryContext,
    RecoveryStrategy,
    RetryStrategy,
)

T = TypeVar("T")


class ErrorRecoveryManager:
    """
    Ordered list of recovery strategies.

    The first strategy (in insertion order) whose can_recover() accepts the
    error owns the whole recovery for that call; its outcome is final.

    Usage:
        manager = ErrorRecoveryManager([RetryStrategy(), CircuitBreakerStrategy()])
        orders = await manager.execute_with_recovery(fetch_orders)
    """

    def __init__(self, strategies: list[RecoveryStrategy] | None = None):
        self._strategies: list[RecoveryStrategy] = list(strategies or [])

    @property
    def strategies(self) -> list[RecoveryStrategy]:
        return list(self._strategies)

    def add_strategy(self, strategy: RecoveryStrategy) -> None:
        """Append a strategy with the lowest priority."""
        self._strategies.append(strategy)

    async def execute_with_recovery(
        self,
        operation: Operation[T],
        context: dict[str, Any] | None = None,
    ) -> T:
        """
        Execute an operation with error recovery.

        Args:
            operation: Zero-argument coroutine function
            context: Free-form parameters; "retry_count" seeds the retry counter

        Returns:
            The operation's result, or the recovering strategy's result

        Raises:
            The original error when no strategy accepts it, or whatever the
            owning strategy raises
        """
        try:
            return await operation()
        except Exception as error:
            for strategy in self._strategies:
                if strategy.can_recover(error):
                    logger.debug(
                        f"{type(strategy).__name__} handling {type(error).__name__}"
                    )
                    params = dict(context or {})
                    retry_count = params.pop("retry_count", 0)
                    return await strategy.recover(
                        error,
                        RecoveryContext(
                            operation=operation,
                            retry_count=retry_count,
                            params=params,
                        ),
                    )
            raise


def create_default_recovery_manager() -> ErrorRecoveryManager:
    """Retry first, then the circuit breaker."""
    return ErrorRecoveryManager([RetryStrategy(), CircuitBreakerStrategy()])
