"""
Service layer exceptions.

Every failure the client surfaces is a single exception type, SellerApiError,
tagged with an ErrorKind. The kind's value doubles as the stable error code
consumed by the formatting layer.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Error taxonomy. Values are the stable codes exposed to callers."""

    AUTHENTICATION = "AUTHENTICATION_ERROR"
    AUTHORIZATION = "AUTHORIZATION_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    THROTTLING = "THROTTLING_ERROR"
    SERVER = "SERVER_ERROR"
    NETWORK = "NETWORK_ERROR"
    MARKETPLACE = "MARKETPLACE_ERROR"
    CLIENT = "CLIENT_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_BREAKER_OPEN"  # Synthetic, raised by the breaker


# Kinds whose payload carries a server-suggested wait
RETRY_AFTER_KINDS = frozenset({ErrorKind.RATE_LIMIT_EXCEEDED, ErrorKind.THROTTLING})


class SellerApiError(Exception):
    """
    Base exception for all client errors.

    Attributes:
        kind: Discriminator used by recovery strategies
        message: Human readable message
        details: Opaque diagnostic payload (headers, API error body, ...)
        cause: The wrapped lower-level exception, if any
        retry_after_ms: Suggested wait for rate limit / throttling errors
        reset_after_ms: Time until a circuit breaker admits a probe
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Any = None,
        cause: BaseException | None = None,
        retry_after_ms: int | None = None,
        reset_after_ms: int | None = None,
    ):
        self.kind = kind
        self.message = message
        self.details = details
        self.cause = cause
        self.retry_after_ms = retry_after_ms
        self.reset_after_ms = reset_after_ms
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def code(self) -> str:
        """Stable string code."""
        return self.kind.value

    def __repr__(self) -> str:
        return f"SellerApiError(kind={self.kind.name}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            data["details"] = self.details
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        if self.retry_after_ms is not None:
            data["retry_after_ms"] = self.retry_after_ms
        if self.reset_after_ms is not None:
            data["reset_after_ms"] = self.reset_after_ms
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SellerApiError":
        """
        Rebuild an error from to_dict() output.

        The cause only survives as text inside details, since exception
        objects do not cross process boundaries.
        """
        details = data.get("details")
        if "cause" in data:
            details = {**(details or {}), "cause": data["cause"]}
        return cls(
            ErrorKind(data["code"]),
            data["message"],
            details=details,
            retry_after_ms=data.get("retry_after_ms"),
            reset_after_ms=data.get("reset_after_ms"),
        )

    # Constructors for the payload-carrying kinds

    @classmethod
    def rate_limited(
        cls,
        message: str,
        retry_after_ms: int,
        details: Any = None,
        cause: BaseException | None = None,
    ) -> "SellerApiError":
        return cls(
            ErrorKind.RATE_LIMIT_EXCEEDED,
            message,
            details=details,
            cause=cause,
            retry_after_ms=retry_after_ms,
        )

    @classmethod
    def throttled(
        cls,
        message: str,
        retry_after_ms: int,
        details: Any = None,
        cause: BaseException | None = None,
    ) -> "SellerApiError":
        return cls(
            ErrorKind.THROTTLING,
            message,
            details=details,
            cause=cause,
            retry_after_ms=retry_after_ms,
        )

    @classmethod
    def circuit_open(
        cls, reset_after_ms: int, cause: BaseException | None = None
    ) -> "SellerApiError":
        return cls(
            ErrorKind.CIRCUIT_OPEN,
            f"Circuit breaker is open, retry after {reset_after_ms}ms",
            details={"reset_after_ms": reset_after_ms},
            cause=cause,
            reset_after_ms=reset_after_ms,
        )


def error_kind(error: BaseException) -> ErrorKind | None:
    """Return the kind of an error, or None for foreign exceptions."""
    kind = getattr(error, "kind", None)
    return kind if isinstance(kind, ErrorKind) else None
