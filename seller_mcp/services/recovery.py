"""
Recovery strategies - policies deciding whether and how to recover from an error.

Strategies:
- RetryStrategy: exponential backoff with jitter, honours retry-after
- FallbackStrategy: substitutes a caller-supplied result
- CircuitBreakerStrategy: see circuit_breaker.py

A strategy is consulted by ErrorRecoveryManager (manager.py) through
can_recover() and, if accepted, owns the whole recovery through recover().
"""

import asyncio
import inspect
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from loguru import logger

from seller_mcp.services.errors import RETRY_AFTER_KINDS, ErrorKind, error_kind

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RecoveryContext(Generic[T]):
    """State handed to a strategy when it takes over a failed operation."""

    operation: Operation[T]
    retry_count: int = 0
    params: dict[str, Any] = field(default_factory=dict)


class RecoveryStrategy(ABC):
    """Base class for recovery strategies."""

    @abstractmethod
    def can_recover(self, error: BaseException) -> bool:
        """Whether this strategy accepts the error."""
        ...

    @abstractmethod
    async def recover(self, error: BaseException, context: RecoveryContext[T]) -> T:
        """Recover from the error or raise."""
        ...


class RetryStrategy(RecoveryStrategy):
    """
    Re-invokes the operation after a delay.

    Rate limit and throttling errors wait for the server-suggested
    retry_after_ms. Everything else backs off exponentially from
    base_delay_ms, capped at max_delay_ms, plus 0-25% jitter.

    Usage:
        strategy = RetryStrategy(max_retries=2, base_delay_ms=100)
        result = await strategy.recover(error, RecoveryContext(operation=fetch))
    """

    RECOVERABLE_KINDS = frozenset(
        {
            ErrorKind.NETWORK,
            ErrorKind.SERVER,
            ErrorKind.RATE_LIMIT_EXCEEDED,
            ErrorKind.THROTTLING,
        }
    )
    JITTER_RATIO = 0.25

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ):
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    def can_recover(self, error: BaseException) -> bool:
        return error_kind(error) in self.RECOVERABLE_KINDS

    def get_delay_ms(self, error: BaseException, retry_count: int) -> float:
        """Delay before attempt number retry_count + 1."""
        if error_kind(error) in RETRY_AFTER_KINDS:
            retry_after = getattr(error, "retry_after_ms", None)
            if retry_after is not None:
                return retry_after

        exponential = min(self.max_delay_ms, self.base_delay_ms * 2**retry_count)
        jitter = self._rng.uniform(0, self.JITTER_RATIO) * exponential
        return exponential + jitter

    async def recover(self, error: BaseException, context: RecoveryContext[T]) -> T:
        retry_count = context.retry_count

        while True:
            if retry_count >= self.max_retries:
                logger.error(
                    f"Retry failed after {retry_count} attempts "
                    f"(max {self.max_retries}): {error}"
                )
                raise error

            delay_ms = self.get_delay_ms(error, retry_count)
            logger.info(
                f"Retrying operation after {type(error).__name__} "
                f"(attempt {retry_count + 1}/{self.max_retries}) in {delay_ms:.0f}ms"
            )
            await self._sleep(delay_ms / 1000)

            try:
                return await context.operation()
            except Exception as exc:
                if not self.can_recover(exc):
                    raise
                error = exc
                retry_count += 1


class FallbackStrategy(RecoveryStrategy):
    """
    Returns fallback_fn(error, context) for the listed error kinds.

    fallback_fn may be a plain function or a coroutine function.
    """

    def __init__(
        self,
        fallback_fn: Callable[[BaseException, RecoveryContext[Any]], Any],
        recoverable_kinds: Iterable[ErrorKind] = (),
    ):
        self._fallback_fn = fallback_fn
        self.recoverable_kinds = frozenset(recoverable_kinds)

    def can_recover(self, error: BaseException) -> bool:
        return error_kind(error) in self.recoverable_kinds

    async def recover(self, error: BaseException, context: RecoveryContext[T]) -> T:
        logger.info(f"Using fallback for {type(error).__name__}: {error}")
        result = self._fallback_fn(error, context)
        if inspect.isawaitable(result):
            result = await result
        return result
