"""Cache configuration (settings and environment).

Single source of truth for all configuration. Uses pydantic-settings
with .env support. Settings are passed explicitly into every component
(CacheStore, controller, facade); get_settings() is only a convenience
for process entry points and scripts.
"""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from retrieval_cache.core import constants
from retrieval_cache.core.tenant_validation import is_safe_key_component


class Settings(BaseSettings):
    """Cache settings loaded from environment and .env.

    All settings have defaults; validate_cache_policy rejects combinations
    that would make stale-while-revalidate meaningless (grace >= TTL) or
    key derivation ambiguous (unsafe key prefix).
    """

    # App
    app_name: str = "mindshop-retrieval-cache"
    app_version: str = "1.0.0"
    debug: bool = False

    # Redis connection
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: SecretStr | None = None
    redis_tls: bool = False
    redis_max_connections: int = 10
    # Bound on every backend round-trip; on timeout reads miss and writes drop.
    redis_socket_timeout: float = 3.0
    redis_connect_timeout: float = 5.0
    health_check_timeout: float = 1.0

    # Keys and envelopes
    cache_key_prefix: str = constants.CACHE_KEY_PREFIX_DEFAULT
    cache_schema_version: str = constants.CACHE_SCHEMA_VERSION

    # Domain TTL policy (seconds)
    cache_default_ttl: int = constants.TTL_DEFAULT
    cache_ttl_retrieval: int = constants.TTL_RETRIEVAL
    cache_ttl_prediction: int = constants.TTL_PREDICTION
    cache_ttl_session: int = constants.TTL_SESSION
    cache_grace_retrieval: int = constants.GRACE_RETRIEVAL
    cache_grace_prediction: int = constants.GRACE_PREDICTION

    # Stale-while-revalidate: "redis" shares locks across instances, "memory" is per-process.
    revalidation_lock_backend: str = "redis"
    revalidation_lock_ttl: int = 180

    # Invalidation and warming
    delete_pattern_batch_size: int = 500
    cache_warming_concurrency: int = 4
    cache_warming_interval: float = 900.0  # seconds between scheduled warming runs

    # OpenTelemetry
    telemetry_enabled: bool = False
    telemetry_exporter: str = "console"
    telemetry_otlp_endpoint: str | None = None
    telemetry_sample_rate: float = 1.0
    telemetry_environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_cache_policy(self) -> "Settings":
        """Validate key prefix, TTL/grace pairs and lock backend."""
        if not is_safe_key_component(self.cache_key_prefix):
            raise ValueError(
                f"cache_key_prefix must be non-empty and free of ':' and glob characters, "
                f"got: {self.cache_key_prefix!r}"
            )
        ttls = {
            "cache_default_ttl": self.cache_default_ttl,
            "cache_ttl_retrieval": self.cache_ttl_retrieval,
            "cache_ttl_prediction": self.cache_ttl_prediction,
            "cache_ttl_session": self.cache_ttl_session,
            "revalidation_lock_ttl": self.revalidation_lock_ttl,
        }
        for name, value in ttls.items():
            if value < 1:
                raise ValueError(f"{name} must be >= 1 second, got: {value}")
        for grace_name, grace, ttl in (
            ("cache_grace_retrieval", self.cache_grace_retrieval, self.cache_ttl_retrieval),
            ("cache_grace_prediction", self.cache_grace_prediction, self.cache_ttl_prediction),
        ):
            if grace < 0 or grace >= ttl:
                raise ValueError(
                    f"{grace_name} must be >= 0 and below its TTL ({ttl}), got: {grace}"
                )
        if self.revalidation_lock_backend not in ("redis", "memory"):
            raise ValueError(
                f"revalidation_lock_backend must be 'redis' or 'memory', "
                f"got: {self.revalidation_lock_backend!r}"
            )
        if self.redis_socket_timeout <= 0 or self.health_check_timeout <= 0:
            raise ValueError("redis_socket_timeout and health_check_timeout must be positive")
        if self.delete_pattern_batch_size < 1 or self.cache_warming_concurrency < 1:
            raise ValueError(
                "delete_pattern_batch_size and cache_warming_concurrency must be >= 1"
            )
        if self.cache_warming_interval <= 0:
            raise ValueError("cache_warming_interval must be positive")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached settings (single instance per process).

    Validation runs on first call, not at import time. In tests, call
    get_settings.cache_clear() before overriding env vars so the next
    get_settings() uses the new values.

    Returns:
        Loaded and validated Settings instance.
    """
    return Settings()
