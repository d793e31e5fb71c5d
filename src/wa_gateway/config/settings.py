"""Application settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "WhatsApp Gateway"
    app_env: Literal["development", "production"] = "development"
    host: str = "0.0.0.0"
    port: int = 3333

    # Webhook relay. Empty URL disables delivery.
    webhook_url: str = Field(
        default="",
        validation_alias=AliasChoices("WEBHOOK_URL", "SUPABASE_WEBHOOK_URL"),
    )
    webhook_timeout_seconds: float = 30.0

    # Sessions
    sessions_dir: Path = Path("sessions")
    reconnect_delay_seconds: float = 5.0

    # Label shown in the phone's "linked devices" list
    browser_name: str = "Lovable CRM"
    browser_client: str = "Chrome"
    browser_version: str = "120.0.0"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # CORS
    cors_origins: str = "*"

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"

    @property
    def browser(self) -> tuple[str, str, str]:
        """Device label triple passed to the protocol client."""
        return (self.browser_name, self.browser_client, self.browser_version)

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
