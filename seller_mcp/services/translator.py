"""
Error translation - maps raw API failures onto the typed SellerApiError.

Two steps:
- classify_http_error(): httpx exception -> ApiError (category + status)
- translate_api_error(): ApiError -> SellerApiError (ErrorKind + payload)
"""

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

import httpx
from loguru import logger

from seller_mcp.services.errors import ErrorKind, SellerApiError

DEFAULT_RETRY_AFTER_MS = 1000

_LEADING_INT = re.compile(r"^\s*(\d+)")


class ApiErrorType(str, Enum):
    """Raw error categories assigned at the transport boundary."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ApiError(Exception):
    """Untranslated API failure."""

    def __init__(
        self,
        message: str,
        type: ApiErrorType | str,
        status_code: int | None = None,
        details: Any = None,
        cause: BaseException | None = None,
    ):
        self.message = message
        self.type = type
        self.status_code = status_code
        self.details = details
        self.cause = cause
        super().__init__(message)


def parse_retry_after_ms(details: Any) -> int:
    """
    Extract the retry-after header from error details, in milliseconds.

    The header is read as whole seconds (leading digits, like parseInt).
    Missing or non-numeric values fall back to DEFAULT_RETRY_AFTER_MS.
    """
    if not isinstance(details, Mapping):
        return DEFAULT_RETRY_AFTER_MS

    headers = details.get("headers")
    if not isinstance(headers, Mapping):
        return DEFAULT_RETRY_AFTER_MS

    raw = headers.get("retry-after")
    if raw is None:
        raw = next(
            (v for k, v in headers.items() if str(k).lower() == "retry-after"), None
        )
    if raw is None:
        return DEFAULT_RETRY_AFTER_MS

    match = _LEADING_INT.match(str(raw))
    if not match:
        return DEFAULT_RETRY_AFTER_MS
    return int(match.group(1)) * 1000


def _details_code(details: Any) -> Any:
    return details.get("code") if isinstance(details, Mapping) else None


def translate_api_error(error: ApiError) -> SellerApiError:
    """
    Translate a raw API error into a typed SellerApiError.

    Total and deterministic: every input maps to exactly one kind, with
    UNKNOWN as the fallback. The category name is prefixed to the message;
    details and cause are carried over unchanged.
    """
    message = error.message
    status = error.status_code
    details = error.details
    cause = error.cause
    try:
        category = ApiErrorType(error.type)
    except ValueError:
        category = None

    if category == ApiErrorType.AUTH_ERROR:
        if status == 401:
            translated = SellerApiError(
                ErrorKind.AUTHENTICATION,
                f"Authentication failed: {message}",
                details=details,
                cause=cause,
            )
        else:
            translated = SellerApiError(
                ErrorKind.AUTHORIZATION,
                f"Authorization failed: {message}",
                details=details,
                cause=cause,
            )
        logger.error(f"{translated.code} (status={status}): {message}")

    elif category == ApiErrorType.VALIDATION_ERROR:
        translated = SellerApiError(
            ErrorKind.VALIDATION,
            f"Validation error: {message}",
            details=details,
            cause=cause,
        )
        logger.error(f"{translated.code}: {message}")

    elif category == ApiErrorType.RATE_LIMIT_EXCEEDED:
        retry_after_ms = parse_retry_after_ms(details)
        translated = SellerApiError.rate_limited(
            f"Rate limit exceeded: {message}",
            retry_after_ms,
            details=details,
            cause=cause,
        )
        logger.warning(f"{translated.code} (retry after {retry_after_ms}ms)")

    elif category == ApiErrorType.SERVER_ERROR:
        translated = SellerApiError(
            ErrorKind.SERVER,
            f"Server error: {message}",
            details=details,
            cause=cause,
        )
        logger.error(f"{translated.code} (status={status}): {message}")

    elif category == ApiErrorType.NETWORK_ERROR:
        translated = SellerApiError(
            ErrorKind.NETWORK,
            f"Network error: {message}",
            details=details,
            cause=cause,
        )
        logger.error(f"{translated.code}: {message}")

    elif category == ApiErrorType.CLIENT_ERROR:
        if status == 404:
            translated = SellerApiError(
                ErrorKind.RESOURCE_NOT_FOUND,
                f"Resource not found: {message}",
                details=details,
                cause=cause,
            )
            logger.warning(f"{translated.code}: {message}")
        elif status == 429 or _details_code(details) == "QuotaExceeded":
            retry_after_ms = parse_retry_after_ms(details)
            translated = SellerApiError.throttled(
                f"Throttling error: {message}",
                retry_after_ms,
                details=details,
                cause=cause,
            )
            logger.warning(f"{translated.code} (retry after {retry_after_ms}ms)")
        else:
            translated = SellerApiError(
                ErrorKind.CLIENT,
                f"Client error: {message}",
                details=details,
                cause=cause,
            )
            logger.error(f"{translated.code} (status={status}): {message}")

    else:
        translated = SellerApiError(
            ErrorKind.UNKNOWN,
            f"Unknown error: {message}",
            details=details,
            cause=cause,
        )
        logger.error(f"{translated.code} (type={error.type}): {message}")

    return translated


def _error_body(response: httpx.Response) -> tuple[Any, str | None, str | None]:
    """Return (body, api error code, api error message) from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500], None, None

    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return body, errors[0].get("code"), errors[0].get("message")
        return body, body.get("code"), body.get("message")
    return body, None, None


def classify_http_error(exc: BaseException) -> ApiError:
    """Build a raw ApiError from an httpx exception."""
    if isinstance(exc, ApiError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        status = response.status_code
        body, code, api_message = _error_body(response)

        if status == 400:
            error_type = ApiErrorType.VALIDATION_ERROR
        elif status in (401, 403):
            error_type = ApiErrorType.AUTH_ERROR
        elif status == 429:
            error_type = ApiErrorType.RATE_LIMIT_EXCEEDED
        elif status >= 500:
            error_type = ApiErrorType.SERVER_ERROR
        elif status >= 400:
            error_type = ApiErrorType.CLIENT_ERROR
        else:
            error_type = ApiErrorType.UNKNOWN_ERROR

        details: dict[str, Any] = {
            "headers": {k.lower(): v for k, v in response.headers.items()},
            "body": body,
        }
        if code is not None:
            details["code"] = code

        return ApiError(
            api_message or f"HTTP {status}",
            error_type,
            status_code=status,
            details=details,
            cause=exc,
        )

    if isinstance(exc, httpx.TransportError):
        return ApiError(
            str(exc) or type(exc).__name__,
            ApiErrorType.NETWORK_ERROR,
            details={"exception": type(exc).__name__},
            cause=exc,
        )

    return ApiError(
        str(exc) or type(exc).__name__,
        ApiErrorType.UNKNOWN_ERROR,
        cause=exc,
    )
