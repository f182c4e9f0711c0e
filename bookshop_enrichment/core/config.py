from datetime import timedelta
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when credentials required for a run are missing."""


class Settings(BaseSettings):
    app_name: str = "bookshop-enrichment"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    store_page_size: int = 1000
    google_places_api_key: str | None = None
    cron_secret_token: str | None = None
    refresh_batch_size: int = 25
    refresh_pacing_seconds: float = 0.1
    staleness_window_days: int = 90
    resolve_missing_references: bool = False
    provider_timeout_seconds: float = 10.0
    photo_default_width: int = 400
    photo_max_width: int = 1600
    otel_enabled: bool = True
    otel_service_name: str = "bookshop-enrichment"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="BSE_", extra="ignore")

    @property
    def staleness_window(self) -> timedelta:
        return timedelta(days=max(0, self.staleness_window_days))


@lru_cache
def get_settings() -> Settings:
    return Settings()


def require_pipeline_credentials(settings: Settings) -> None:
    missing: list[str] = []
    if not settings.database_url:
        missing.append("BSE_DATABASE_URL")
    if not settings.google_places_api_key:
        missing.append("BSE_GOOGLE_PLACES_API_KEY")
    if missing:
        raise ConfigurationError(f"missing required configuration: {', '.join(missing)}")


def require_provider_key(settings: Settings) -> str:
    if not settings.google_places_api_key:
        raise ConfigurationError("missing required configuration: BSE_GOOGLE_PLACES_API_KEY")
    return settings.google_places_api_key
