from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "resource-directory-api"
    environment: str = "dev"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    # comma-separated "module-id:sha256(api key)" pairs for machine callers
    machine_credentials: str = ""
    # peers whose X-Forwarded-For / X-Real-IP headers are honored
    trusted_proxies: str = ""
    slug_max_length: int = 80
    slug_max_attempts: int = 250
    slug_insert_retries: int = 1
    toggle_rate_limit_max_ops: int = 5
    toggle_rate_limit_window_seconds: int = 10
    submission_rate_limit_max_ops: int = 10
    submission_rate_limit_window_seconds: int = 3600
    fingerprint_salt: str = ""
    listing_cache_ttl_seconds: float = 60.0
    listing_cache_max_entries: int = 256
    allow_self_moderation: bool = False
    otel_enabled: bool = True
    otel_service_name: str = "resource-directory-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="RD_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
