from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "directory-reconciler"
    api_key: str | None = None
    request_timeout_seconds: float = 10.0
    reconcile_interval_seconds: float = 60.0
    reconcile_batch_size: int = 100
    max_backoff_seconds: float = 300.0
    otel_enabled: bool = True
    otel_service_name: str = "resource-directory-workers"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="RD_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
