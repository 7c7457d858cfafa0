from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Catalog Sync API"
    env: str = "production"
    cron_secret: str | None = Field(default=None, validation_alias=AliasChoices("CRON_SECRET", "cron_secret"))
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PIM_", extra="ignore")

    @property
    def cron_auth_required(self) -> bool:
        return self.env != "development" and bool(self.cron_secret)


@lru_cache
def get_settings() -> Settings:
    return Settings()
