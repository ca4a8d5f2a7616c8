from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "PriceWatch API"
    env: str = "dev"
    database_url: str = Field(default="sqlite:///./pricewatch.db")
    admin_token: str = "dev-admin-token"
    default_page_size: int = 10

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PRICEWATCH_API_")


@lru_cache
def get_settings() -> Settings:
    return Settings()
