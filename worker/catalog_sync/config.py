from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from catalog_sync.matching.exclusion import DEFAULT_EXCLUDED_WORDS


class SyncSettings(BaseSettings):
    database_url: str = Field(
        default="sqlite+aiosqlite:///./catalog.db",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
    )

    lightspeed_api_key: str | None = Field(default=None, validation_alias=AliasChoices("LIGHTSPEED_API_KEY", "lightspeed_api_key"))
    lightspeed_api_secret: str | None = Field(
        default=None, validation_alias=AliasChoices("LIGHTSPEED_API_SECRET", "lightspeed_api_secret")
    )
    lightspeed_language: str = Field(default="nl", validation_alias=AliasChoices("LIGHTSPEED_LANGUAGE", "lightspeed_language"))
    lightspeed_base_url: str | None = Field(default=None, validation_alias=AliasChoices("LIGHTSPEED_BASE_URL", "lightspeed_base_url"))

    picqer_api_key: str | None = Field(default=None, validation_alias=AliasChoices("PICQER_API_KEY", "picqer_api_key"))
    picqer_base_url: str | None = Field(default=None, validation_alias=AliasChoices("PICQER_BASE_URL", "picqer_base_url"))

    page_size: int = 250
    page_delay_seconds: float = 0.3
    item_delay_seconds: float = 0.2
    batch_size: int = 50
    max_retries: int = 5
    request_timeout_seconds: float = 30.0
    sample_limit: int = 20
    price_country_code: str = "NL"
    content_locale: str = "NL"
    excluded_words: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_WORDS))

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PIM_SYNC_", extra="ignore")


@lru_cache
def get_settings() -> SyncSettings:
    return SyncSettings()
