"""
Configuration and settings for the AppHub service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

StorageBackend = Literal["firebase", "postgres", "supabase", "memory"]


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Which storage adapter to build (BMS_DATABASE)
    bms_database: str = Field(default="firebase")

    # Postgres (any SQLAlchemy URL)
    database_url: Optional[str] = Field(default=None)

    # Firebase Admin
    firebase_service_account: Optional[str] = Field(default=None)
    firebase_project_id: Optional[str] = Field(default=None)

    # Supabase
    supabase_url: Optional[str] = Field(default=None)
    supabase_key: Optional[str] = Field(default=None)

    # Default for the global app config document
    default_show_register_tab: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "bms_default_show_register_tab", "default_show_register_tab"
        ),
    )

    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("environment", "node_env"),
    )
    log_level: str = Field(default="INFO")
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def storage_backend(self) -> StorageBackend:
        value = (self.bms_database or "").strip().lower()
        if value in ("postgres", "supabase", "memory"):
            return value  # type: ignore[return-value]
        return "firebase"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def default_app_config(self) -> dict:
        return {"showRegisterTab": self.default_show_register_tab}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
