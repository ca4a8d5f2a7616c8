from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkerSettings(BaseSettings):
    database_url: str = "sqlite:///./pricewatch.db"

    lookup_concurrency: int = 20
    lookup_timeout_seconds: float = 300.0
    recommendation_timeout_seconds: float = 120.0
    confidence_threshold: float = 0.6
    progress_flush_every: int = 5
    default_tax_rate: float = 0.19

    lookup_oracle_url: str | None = None
    recommendation_oracle_url: str | None = None
    oracle_http_timeout: float = 30.0
    oracle_max_retries: int = 2
    oracle_retry_backoff_seconds: float = 0.6

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PRICEWATCH_")


@lru_cache
def get_settings() -> WorkerSettings:
    return WorkerSettings()
