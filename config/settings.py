"""Configuration for the zpool cache layer, loaded from the environment."""

from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cache.keys import KeyCategory

# Sepolia deployment of the ZPool ledger contract
DEFAULT_LEDGER_ADDRESS = "0xF6e6AE366316b30699e275A8bA0627AAb967a4Da"
DEFAULT_STORAGE_KEY = "zpool_persistent_cache"


class CacheSettings(BaseSettings):
    """Settings for the cache store, coordinator and chain watchers.

    Every value can be overridden through a ``ZPOOL_CACHE_``-prefixed
    environment variable or passed explicitly at construction.
    """

    model_config = SettingsConfigDict(
        env_prefix="ZPOOL_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    # Store
    default_ttl: float = Field(default=30.0, gt=0, description="Default entry lifetime in seconds")
    max_size: int = Field(default=1000, ge=1, description="Maximum number of cache entries")
    cleanup_interval: float = Field(default=60.0, gt=0, description="Seconds between expiry sweeps")

    # Durable storage
    storage_backend: Literal["file", "redis", "memory"] = "file"
    storage_path: Path = Path(f"{DEFAULT_STORAGE_KEY}.json")
    redis_url: str = "redis://localhost:6379/0"
    storage_key: str = DEFAULT_STORAGE_KEY

    # Key categories
    ttl_overrides: Dict[str, float] = Field(default_factory=dict)

    # Coordinator
    debounce_delay: float = Field(default=0.2, ge=0)

    # Watchers
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, gt=0)
    polling_interval: float = Field(default=10.0, gt=0)
    rpc_url: Optional[str] = None
    ws_url: Optional[str] = None
    ledger_address: str = DEFAULT_LEDGER_ADDRESS

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    @field_validator("ttl_overrides")
    @classmethod
    def _positive_ttls(cls, value: Dict[str, float]) -> Dict[str, float]:
        known = {category.value for category in KeyCategory}
        for category, ttl in value.items():
            if category not in known:
                raise ValueError(f"Unknown key category '{category}'; expected one of {sorted(known)}")
            if ttl <= 0:
                raise ValueError(f"TTL override for '{category}' must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


@lru_cache()
def get_settings() -> CacheSettings:
    """Get the process-wide settings instance."""
    return CacheSettings()
