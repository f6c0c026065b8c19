"""Central environment-driven settings for the donations service.

The process loads this once at startup. Behavior is controlled by
environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "donations"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./donations.sqlite"
    auto_create_schema: bool = True
    api_key: str | None = None
    conversion_api_url: str = "http://localhost:3000/api/fb-conversion"
    conversion_api_token: str | None = None
    conversion_test_event_code: str | None = None
    order_complete_url: str = "https://example.org/orderComplete"
    currency: str = "EUR"
    geo_lookup_urls: list[str] = ["https://ipapi.co/{ip}/json/", "https://ipwho.is/{ip}"]
    http_timeout_seconds: float = 10.0
    conversion_max_attempts: int = 3
    conversion_cooldown_seconds: int = 300
    sweep_interval_seconds: float = 60.0
    sweep_batch_limit: int = 100
    sender_max_tries: int = 2
    sender_retry_backoff_seconds: float = 0.0
    payment_success_max_code: int = 99
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
