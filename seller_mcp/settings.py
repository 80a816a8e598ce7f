import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from seller_mcp.log import configure_logging
from seller_mcp.services.cache import CacheConfig, default_cache_dir
from seller_mcp.services.circuit_breaker import CircuitBreakerStrategy
from seller_mcp.services.manager import ErrorRecoveryManager
from seller_mcp.services.recovery import RetryStrategy


class Settings(BaseModel):
    # API Configuration
    api_base_url: str = Field(
        default="https://sellingpartnerapi-na.amazon.com", alias="SELLER_MCP_API_BASE_URL"
    )
    request_timeout: float = Field(default=30.0, alias="SELLER_MCP_REQUEST_TIMEOUT")

    # Cache Configuration
    cache_ttl: float = Field(default=60, alias="SELLER_MCP_CACHE_TTL")
    cache_check_period: float = Field(default=120, alias="SELLER_MCP_CACHE_CHECK_PERIOD")
    cache_max_entries: int = Field(default=1000, alias="SELLER_MCP_CACHE_MAX_ENTRIES")
    cache_persistent: bool = Field(default=False, alias="SELLER_MCP_CACHE_PERSISTENT")
    cache_dir: Path = Field(default_factory=default_cache_dir, alias="SELLER_MCP_CACHE_DIR")
    cache_collect_stats: bool = Field(default=True, alias="SELLER_MCP_CACHE_STATS")

    # Retry Configuration
    max_retries: int = Field(default=3, alias="SELLER_MCP_MAX_RETRIES")
    retry_base_delay_ms: int = Field(default=1000, alias="SELLER_MCP_RETRY_BASE_DELAY_MS")
    retry_max_delay_ms: int = Field(default=30000, alias="SELLER_MCP_RETRY_MAX_DELAY_MS")

    # Circuit Breaker Configuration
    circuit_failure_threshold: int = Field(
        default=5, alias="SELLER_MCP_CIRCUIT_FAILURE_THRESHOLD"
    )
    circuit_reset_timeout_ms: int = Field(
        default=60000, alias="SELLER_MCP_CIRCUIT_RESET_TIMEOUT_MS"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", alias="SELLER_MCP_LOG_LEVEL")
    log_redact: bool = Field(default=True, alias="SELLER_MCP_LOG_REDACT")

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "Settings":
        """Read settings from environment variables (after loading .env)."""
        if env is None:
            load_dotenv()
            env = dict(os.environ)
        return cls.model_validate(env)

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            default_ttl=self.cache_ttl,
            check_period=self.cache_check_period,
            max_entries=self.cache_max_entries,
            persistent=self.cache_persistent,
            persistent_dir=self.cache_dir,
            collect_stats=self.cache_collect_stats,
        )

    def recovery_manager(self) -> ErrorRecoveryManager:
        """Build the default strategy chain: retry, then circuit breaker."""
        return ErrorRecoveryManager(
            [
                RetryStrategy(
                    max_retries=self.max_retries,
                    base_delay_ms=self.retry_base_delay_ms,
                    max_delay_ms=self.retry_max_delay_ms,
                ),
                CircuitBreakerStrategy(
                    failure_threshold=self.circuit_failure_threshold,
                    reset_timeout_ms=self.circuit_reset_timeout_ms,
                ),
            ]
        )

    def configure_logging(self, sink: Any = None) -> int:
        """Install the loguru sink at log_level, redacting when log_redact is set."""
        return configure_logging(self.log_level, redact=self.log_redact, sink=sink)
