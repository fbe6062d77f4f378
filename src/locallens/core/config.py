"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Result store (Redis)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection string for the result store",
    )
    store_socket_timeout: float = Field(
        default=1.0,
        description="Socket timeout in seconds for result store commands",
        gt=0,
    )

    # Broker (Redis Streams)
    broker_url: str | None = Field(
        default=None,
        description="Redis connection string for the job broker (defaults to redis_url)",
    )
    broker_stream: str = Field(
        default="geocoding:requests",
        description="Stream that geocoding jobs are published to",
    )
    broker_group: str = Field(
        default="geocoding-workers",
        description="Consumer group shared by geocoding workers",
    )
    broker_stream_maxlen: int = Field(
        default=10000,
        description="Approximate maximum length of the job stream",
        gt=0,
    )
    broker_probe_timeout: float = Field(
        default=0.5,
        description="Timeout in seconds for the broker availability probe",
        gt=0,
    )
    broker_require_consumers: bool = Field(
        default=True,
        description="Treat the broker as unavailable unless a worker consumer is registered",
    )

    @property
    def effective_broker_url(self) -> str:
        """Broker connection string, falling back to the result store URL."""
        return self.broker_url or self.redis_url

    # Geocoding: cache and job lifetimes (seconds)
    geocode_cache_ttl: int = Field(
        default=86400,
        description="TTL for pincode/coordinate lookup cache entries",
        gt=0,
    )
    geocode_job_ttl: int = Field(
        default=900,
        description="TTL for job status records",
        gt=0,
    )
    geocode_inflight_ttl: int = Field(
        default=300,
        description="TTL for in-flight job markers",
        gt=0,
    )
    geocode_job_max_age: int = Field(
        default=300,
        description="Queued jobs older than this are failed by workers instead of processed",
        gt=0,
    )

    # Geocoding: short poll and fallback
    short_poll_window: float = Field(
        default=1.0,
        description="Seconds to wait for a queued job before falling back to a direct lookup",
        ge=0,
    )
    short_poll_interval: float = Field(
        default=0.1,
        description="Seconds between job status checks during the short poll",
        gt=0,
    )
    processing_grace: float = Field(
        default=0.0,
        description="Extra seconds granted when a job is already processing at the end of the poll window",
        ge=0,
    )
    provider_call_timeout: float = Field(
        default=10.0,
        description="Upper bound in seconds for one direct provider-chain call",
        gt=0,
    )

    # Geocoding: worker
    worker_max_attempts: int = Field(
        default=3,
        description="Attempts per job before a worker records failure",
        gt=0,
    )
    worker_retry_base_delay: float = Field(
        default=1.0,
        description="Base delay in seconds for exponential worker retry backoff",
        ge=0,
    )
    worker_block_ms: int = Field(
        default=5000,
        description="Milliseconds a worker blocks waiting for new jobs",
        gt=0,
    )

    # Geocoding: providers
    geocoder_fallback_order: str = Field(
        default="google,nominatim",
        description="Comma-separated provider fallback order for direct geocoding",
    )
    geocoder_google_api_key: str | None = Field(
        default=None,
        description="Google Maps Geocoding API key (Google is skipped without one)",
    )
    geocoder_google_timeout: float = Field(
        default=5.0,
        description="Google Maps request timeout in seconds",
        gt=0,
    )
    geocoder_nominatim_email: str = Field(
        default="",
        description="Email for Nominatim usage policy compliance",
    )
    geocoder_nominatim_timeout: float = Field(
        default=5.0,
        description="Nominatim request timeout in seconds",
        gt=0,
    )
    geocoder_nominatim_user_agent: str = Field(
        default="LocalLens/1.0",
        description="User-Agent sent to Nominatim (required by its usage policy)",
    )

    @field_validator("geocoder_fallback_order")
    @classmethod
    def validate_fallback_order(cls, v: str) -> str:
        known = {"google", "nominatim"}
        unknown = [p.strip() for p in v.split(",") if p.strip() and p.strip().lower() not in known]
        if unknown:
            msg = f"Unknown geocoder provider(s) in fallback order: {', '.join(unknown)}"
            raise ValueError(msg)
        return v

    @property
    def geocoder_fallback_order_list(self) -> list[str]:
        """Parse fallback order string into a list of provider names.

        Returns:
            List of provider names in fallback order.
        """
        if not self.geocoder_fallback_order.strip():
            return []
        return [p.strip().lower() for p in self.geocoder_fallback_order.split(",") if p.strip()]

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )
    log_json: bool = Field(
        default=False,
        description="Emit console logs as one JSON object per line",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
