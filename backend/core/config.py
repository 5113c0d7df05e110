# backend/core/config.py
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from the environment and .env."""

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Riftventory Trades API"
    APP_VERSION: str = "0.2.0"

    # Supabase
    SUPABASE_URL: str = "http://127.0.0.1:54321"
    SUPABASE_KEY: str = ""

    # Comma-separated; "*" allows every origin (Expo dev clients)
    CORS_ORIGINS: str = "*"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # Trade protocol
    LEDGER_MAX_RETRIES: int = 2
    LEDGER_CAS_ATTEMPTS: int = 5
    MAX_OFFER_LINES: int = 50
    # Copies are moved one at a time on accept
    MAX_LINE_QUANTITY: int = 10_000

    # Reconciliation endpoints are disabled while this is empty
    ADMIN_TOKEN: str = ""

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
