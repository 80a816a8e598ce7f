"""
CircuitBreakerStrategy - Stops calling a failing dependency for a cooldown period.

States:
- CLOSED: Normal operation, failures are counted
- OPEN: Dependency is failing, recovery fails fast
- HALF_OPEN: Cooldown elapsed, a single probe is allowed

Transitions:
- CLOSED → OPEN: When failure_threshold trip-eligible failures are seen
- OPEN → HALF_OPEN: Once the reset deadline has passed (checked on access)
- HALF_OPEN → CLOSED: On a successful probe
- HALF_OPEN → OPEN: On a failed probe, with a fresh deadline

Only errors whose kind is in trip_kinds touch the state. The breaker is
shared by every caller of the owning manager; can_recover() and recover()
are separated by an await, so overlapping failures may be counted twice.
"""

import math
import time
from enum import Enum
from typing import Any, Callable, Iterable, TypeVar

from loguru import logger

from seller_mcp.services.errors import ErrorKind, SellerApiError, error_kind
from seller_mcp.services.recovery import RecoveryContext, RecoveryStrategy

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing fast
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


class CircuitBreakerStrategy(RecoveryStrategy):
    """
    Circuit breaker recovery strategy.

    Usage:
        breaker = CircuitBreakerStrategy(failure_threshold=2, reset_timeout_ms=500)

        if breaker.can_recover(error):
            return await breaker.recover(error, RecoveryContext(operation=fetch))
        raise error
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_ms: int = 60000,
        trip_kinds: Iterable[ErrorKind] = (ErrorKind.SERVER, ErrorKind.NETWORK),
        clock: Callable[[], float] | None = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.trip_kinds = frozenset(trip_kinds)
        self._clock = clock or time.time

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        """Get current state, moving OPEN to HALF_OPEN once the deadline passed."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() >= self._opened_at + self.reset_timeout_ms / 1000:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker transitioned to HALF_OPEN")
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    def is_trip_error(self, error: BaseException) -> bool:
        return error_kind(error) in self.trip_kinds

    def can_recover(self, error: BaseException) -> bool:
        """
        Record a trip-eligible failure and report whether recovery may proceed.

        The state update is a side effect of this check. In HALF_OPEN the
        failure that led here predates the probe, so it does not reopen the
        circuit; the probe run by recover() decides.
        """
        if not self.is_trip_error(error):
            return False

        current = self.state
        if current == CircuitState.CLOSED:
            self._record_failure(error)
        elif current == CircuitState.OPEN:
            self._last_failure_time = self._clock()
            logger.debug(f"Circuit breaker received error while open: {error}")

        return self.state != CircuitState.OPEN

    async def recover(self, error: BaseException, context: RecoveryContext[T]) -> T:
        if self.state == CircuitState.OPEN:
            reset_after_ms = self._reset_after_ms()
            logger.warning(
                f"Operation rejected by circuit breaker (open, reset in {reset_after_ms}ms)"
            )
            raise SellerApiError.circuit_open(reset_after_ms, cause=error)

        try:
            result = await context.operation()
        except Exception as exc:
            self._record_failure(exc)
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def _record_failure(self, error: BaseException) -> None:
        """Apply a trip-eligible failure to the state machine."""
        if not self.is_trip_error(error):
            return

        current = self.state
        self._last_failure_time = self._clock()

        if current == CircuitState.CLOSED:
            self._failure_count += 1
            logger.debug(
                f"Circuit breaker failure count {self._failure_count}/"
                f"{self.failure_threshold}: {error}"
            )
            if self._failure_count >= self.failure_threshold:
                self._open()
        elif current == CircuitState.HALF_OPEN:
            logger.warning("Circuit breaker probe failed, reopening")
            self._open()

    def _open(self) -> None:
        """Transition to OPEN and start the reset deadline."""
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            f"Circuit breaker OPENED after {self._failure_count} failures "
            f"(reset in {self.reset_timeout_ms}ms)"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        logger.info("Circuit breaker CLOSED (recovered)")

    def _reset_after_ms(self) -> int:
        remaining = self.get_time_until_reset() or 0.0
        return max(1, math.ceil(remaining * 1000))

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._last_failure_time = None
        logger.info("Circuit breaker manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the circuit admits a probe."""
        if self.state != CircuitState.OPEN or self._opened_at is None:
            return None

        reset_at = self._opened_at + self.reset_timeout_ms / 1000
        return max(0.0, reset_at - self._clock())

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_time": self._last_failure_time,
            "opened_at": self._opened_at,
            "time_until_reset": self.get_time_until_reset(),
        }
