"""
Service layer infrastructure - resilience and caching for marketplace API calls.

Provides:
- SellerApiError / ErrorKind: Typed error surface
- translate_api_error: Raw API failure -> typed error
- RetryStrategy, FallbackStrategy, CircuitBreakerStrategy: Recovery policies
- ErrorRecoveryManager: Ordered strategy chain around an operation
- CacheManager: Two-tier cache with TTL and statistics
- ServiceClient: httpx client combining all of the above
"""

from seller_mcp.services.errors import ErrorKind, SellerApiError
from seller_mcp.services.translator import (
    ApiError,
    ApiErrorType,
    classify_http_error,
    parse_retry_after_ms,
    translate_api_error,
)
from seller_mcp.services.recovery import (
    FallbackStrategy,
    RecoveryContext,
    RecoveryStrategy,
    RetryStrategy,
)
from seller_mcp.services.circuit_breaker import CircuitBreakerStrategy, CircuitState
from seller_mcp.services.manager import (
    ErrorRecoveryManager,
    create_default_recovery_manager,
)
from seller_mcp.services.cache import CacheConfig, CacheEntry, CacheManager, CacheStats
from seller_mcp.services.client import ServiceClient

__all__ = [
    # Errors
    "ErrorKind",
    "SellerApiError",
    # Translation
    "ApiError",
    "ApiErrorType",
    "classify_http_error",
    "parse_retry_after_ms",
    "translate_api_error",
    # Recovery
    "RecoveryContext",
    "RecoveryStrategy",
    "RetryStrategy",
    "FallbackStrategy",
    "CircuitBreakerStrategy",
    "CircuitState",
    "ErrorRecoveryManager",
    "create_default_recovery_manager",
    # Cache
    "CacheConfig",
    "CacheEntry",
    "CacheManager",
    "CacheStats",
    # Client
    "ServiceClient",
]
