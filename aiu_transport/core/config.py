from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Transport settings loaded from environment variables.

    All settings can be configured via ``AIU_``-prefixed environment
    variables or a .env file.
    """

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Sent on every request unless the caller overrides it
    user_agent: str = "aiu/0.1.0"

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 120.0  # Streams can idle between events
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Retry defaults
    retry_max_attempts: int = 4  # First attempt + 3 retries
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.2  # Fraction of the delay added at random

    # Default per-key token bucket
    rate_limit_capacity: float = 10.0
    rate_limit_refill_rate: float = 1.0  # tokens per second

    @field_validator(
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("httpx_max_connections", "httpx_max_keepalive_connections")
    @classmethod
    def validate_pool_size_positive(cls, v: int) -> int:
        """Validate pool limits are positive."""
        if v < 1:
            raise ValueError("pool size values must be at least 1")
        return v

    @field_validator("retry_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        """Validate at least one attempt is made."""
        if v < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        return v

    @field_validator("retry_base_delay", "retry_max_delay")
    @classmethod
    def validate_delay_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Retry delays must not be negative")
        return v

    @field_validator("retry_jitter")
    @classmethod
    def validate_jitter(cls, v: float) -> float:
        """Validate jitter is a fraction."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("retry_jitter must be between 0 and 1")
        return v

    @field_validator("rate_limit_capacity", "rate_limit_refill_rate")
    @classmethod
    def validate_rate_limit_positive(cls, v: float) -> float:
        """Validate rate limit values are positive."""
        if v <= 0:
            raise ValueError("Rate limit values must be positive")
        return v

    model_config = SettingsConfigDict(env_prefix="AIU_", env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
