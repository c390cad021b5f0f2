from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Governor settings loaded from environment variables.

    Every field can be set through a ``GOVERNOR_``-prefixed environment
    variable or a ``.env`` file. Durations are in seconds.
    """

    # Rate window defaults
    rate_limit: int = 100
    window_seconds: float = 60.0
    strategy: Literal["sliding_window", "header"] = "sliding_window"
    max_tracked_keys: int = 10000  # LRU cap for the in-memory sliding window

    # Retry / backoff defaults
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    # Circuit breaker defaults
    failure_threshold: int = 5
    recovery_timeout: float = 60.0

    # Execution
    request_timeout: float = 30.0
    max_concurrency: int = 100
    queue_enabled: bool = True
    max_queue_size: int = 0  # 0 = unbounded

    # Counter store (optional)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    counter_key_prefix: str = "sliding_window"

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit", "failure_threshold", "max_concurrency", "max_tracked_keys"
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate counts are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("max_retries", "max_queue_size")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator(
        "window_seconds",
        "base_delay",
        "max_delay",
        "recovery_timeout",
        "request_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("exponential_base")
    @classmethod
    def validate_exponential_base(cls, v: float) -> float:
        if v < 1:
            raise ValueError("exponential_base must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "Settings":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        return self

    model_config = SettingsConfigDict(
        env_prefix="GOVERNOR_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()
