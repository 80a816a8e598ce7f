"""
ServiceClient - Async HTTP client wired to the recovery and cache layers.

Combines:
- ErrorRecoveryManager for retries and circuit breaking
- translate_api_error for the typed error surface
- CacheManager for memoized reads and post-write invalidation

Endpoint-specific clients build on request()/get(); authentication, request
signing and connection pooling are left to the injected httpx.AsyncClient.
"""

from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from seller_mcp.services.cache import CacheManager
from seller_mcp.services.circuit_breaker import CircuitBreakerStrategy
from seller_mcp.services.manager import (
    ErrorRecoveryManager,
    create_default_recovery_manager,
)
from seller_mcp.services.translator import classify_http_error, translate_api_error

if TYPE_CHECKING:
    from seller_mcp.settings import Settings


class ServiceClient:
    """
    HTTP client with typed errors, recovery strategies and caching.

    Usage:
        async with ServiceClient("https://sellingpartnerapi-na.amazon.com") as client:
            orders = await client.get(
                "/orders/v0/orders",
                params={"MarketplaceIds": "ATVPDKIKX0DER"},
                cache_ttl=60,
            )

            await client.request("POST", "/orders/v0/orders/123/shipment", json_data=body)
            await client.clear_cache("/orders/v0/orders*")
    """

    def __init__(
        self,
        base_url: str = "",
        cache: CacheManager | None = None,
        recovery: ErrorRecoveryManager | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.cache = cache or CacheManager()
        self.recovery = recovery or create_default_recovery_manager()
        self._base_url = base_url
        self._timeout = timeout
        self._headers = headers or {}
        self._http_client = http_client
        self._owns_http_client = http_client is None

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        http_client: httpx.AsyncClient | None = None,
    ) -> "ServiceClient":
        """
        Build a client from Settings and install its logging configuration.

        Usage:
            settings = Settings.from_env()
            async with ServiceClient.from_settings(settings) as client:
                ...
        """
        settings.configure_logging()
        logger.info(f"ServiceClient configured for {settings.api_base_url}")
        return cls(
            base_url=settings.api_base_url,
            cache=CacheManager(settings.cache_config()),
            recovery=settings.recovery_manager(),
            timeout=settings.request_timeout,
            http_client=http_client,
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                headers={"Accept": "application/json", **self._headers},
                follow_redirects=True,
            )
        return self._http_client

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Make a request through the recovery manager.

        Returns:
            Decoded JSON body, or None for an empty body

        Raises:
            SellerApiError: Translated failure after recovery gave up
        """

        async def operation() -> Any:
            try:
                return await self._execute_request(method, path, params, json_data, headers)
            except httpx.HTTPError as e:
                raise translate_api_error(classify_http_error(e)) from e

        return await self.recovery.execute_with_recovery(
            operation,
            {"method": method, "path": path, "params": params},
        )

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        next_token: str | None = None,
        cache_ttl: float | timedelta | None = None,
        use_cache: bool = True,
    ) -> Any:
        """GET with the response memoized under endpoint + params + page token."""
        query = dict(params or {})
        if next_token:
            query["nextToken"] = next_token

        if not use_cache:
            return await self.request("GET", path, params=query)

        key = CacheManager.generate_key(path, params, next_token)
        return await self.cache.with_cache(
            key,
            lambda: self.request("GET", path, params=query),
            cache_ttl,
        )

    async def _execute_request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json_data: Any,
        headers: dict[str, str] | None,
    ) -> Any:
        """Execute the actual HTTP request."""
        client = self._get_http_client()
        response = await client.request(
            method=method,
            url=path,
            params=params,
            headers=headers,
            json=json_data,
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def clear_cache(self, pattern: str | None = None) -> int:
        """Invalidate cache entries matching a pattern, or everything."""
        if pattern:
            return await self.cache.invalidate(pattern)
        await self.cache.clear()
        return -1  # Indicates full clear

    def get_health_status(self) -> dict[str, Any]:
        """Get cache statistics and circuit breaker states."""
        return {
            "cache": self.cache.get_stats().to_dict(),
            "circuit_breakers": [
                s.get_status()
                for s in self.recovery.strategies
                if isinstance(s, CircuitBreakerStrategy)
            ],
        }

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client and self._owns_http_client:
            await self._http_client.aclose()
        self._http_client = None
        logger.debug("ServiceClient closed")

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
