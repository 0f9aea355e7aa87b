from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Explicit constructor arguments on the limiters always win over these.
    """

    # Store settings
    store_backend: str = "redis"  # redis | memory
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 1.0  # Per-command timeout; the only cancellation point
    redis_socket_connect_timeout: float = 1.0

    # Sliding window counter settings
    sliding_window_key_prefix: str = "flowlimit:throttle:"
    sliding_window_expire_grace_seconds: int = 1  # Extra lifetime beyond one window

    # Leaky bucket settings
    leaky_bucket_refresh_key: str = "flowlimit:lkbucket:refresh:lasttime"
    leaky_bucket_level_key: str = "flowlimit:lkbucket:water:has:count"
    leaky_bucket_timeout_seconds: int = 6
    leaky_bucket_default_rate: int = 20  # units drained per second
    leaky_bucket_default_burst: int = 10

    # Token bucket settings
    token_bucket_key: str = "flowlimit:tkbucket:token"
    token_bucket_timeout_seconds: int = 60
    token_bucket_default_burst: int = 100

    # HTTP middleware settings
    rate_limit_fail_open: bool = False  # If True, admit requests when the store fails

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Validate the store backend name."""
        v = v.strip().lower()
        if v not in ("redis", "memory"):
            raise ValueError("store_backend must be 'redis' or 'memory'")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate the log format name."""
        v = v.strip().lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    @field_validator(
        "leaky_bucket_timeout_seconds",
        "leaky_bucket_default_rate",
        "leaky_bucket_default_burst",
        "token_bucket_timeout_seconds",
        "token_bucket_default_burst",
    )
    @classmethod
    def validate_bucket_positive(cls, v: int) -> int:
        """Validate bucket defaults and timeouts are positive."""
        if v < 1:
            raise ValueError("bucket values must be at least 1")
        return v

    @field_validator("sliding_window_expire_grace_seconds")
    @classmethod
    def validate_grace_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("sliding_window_expire_grace_seconds must not be negative")
        return v

    @field_validator("redis_socket_timeout", "redis_socket_connect_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
