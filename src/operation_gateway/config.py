"""Configuration for the Operation Gateway."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional, Set

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(raw: Optional[str]) -> Set[str]:
    if not raw:
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    service_name: str = Field(default="operation-gateway")

    gateway_spec_dir: str = Field(default="specs")
    gateway_name_prefix: str = Field(default="api")

    gateway_base_url: str = Field(default="http://localhost:8080")
    gateway_request_timeout_seconds: float = Field(default=30)
    gateway_verify_ssl: bool = Field(default=True)

    gateway_auth_type: Optional[str] = Field(default=None, description="api_key or bearer")
    gateway_auth_name: str = Field(default="Authorization")
    gateway_auth_in: str = Field(default="header")
    gateway_auth_value: Optional[str] = Field(default=None)

    gateway_header_allowlist: Optional[str] = Field(default=None)
    gateway_tool_allowlist: Optional[str] = Field(default=None)
    gateway_register_operation_tools: bool = Field(default=False)

    gateway_max_concurrency: int = Field(default=20)
    gateway_default_max_pages: int = Field(default=10)

    gateway_retry_max_attempts: int = Field(default=3)
    gateway_retry_base_delay_seconds: float = Field(default=1.0)
    gateway_retry_max_delay_seconds: float = Field(default=30.0)

    gateway_rate_limit_capacity: int = Field(default=20)
    gateway_rate_limit_refill_per_second: float = Field(default=2.0)

    gateway_breaker_failure_threshold: int = Field(default=5)
    gateway_breaker_success_threshold: int = Field(default=2)
    gateway_breaker_open_timeout_seconds: float = Field(default=60.0)
    gateway_breaker_window_seconds: float = Field(default=10.0)
    gateway_breaker_half_open_max_calls: int = Field(default=1)

    gateway_cache_enabled: bool = Field(default=True)
    gateway_cache_ttl_seconds: float = Field(default=60.0)
    gateway_cache_max_entries: int = Field(default=1000)
    gateway_cache_sweep_interval_seconds: float = Field(default=60.0)

    gateway_pool_max_connections: int = Field(default=50)
    gateway_pool_max_keepalive: int = Field(default=10)
    gateway_pool_keepalive_expiry_seconds: float = Field(default=60.0)
    gateway_pool_warn_utilization: float = Field(default=80.0)

    gateway_transport: str = Field(default="stdio")
    gateway_host: str = Field(default="0.0.0.0")
    gateway_port: int = Field(default=8000)
    gateway_auth_token: Optional[str] = Field(default=None)

    gateway_metrics_enabled: bool = Field(default=True)
    gateway_metrics_prefix: str = Field(default="gateway")
    gateway_shutdown_timeout_seconds: float = Field(default=30.0)

    gateway_log_level: str = Field(default="INFO")

    def header_allowlist(self) -> Set[str]:
        return {item.lower() for item in _split_csv(self.gateway_header_allowlist)}

    def tool_allowlist(self) -> Set[str]:
        return _split_csv(self.gateway_tool_allowlist)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
