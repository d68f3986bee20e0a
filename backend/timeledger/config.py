from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


STORAGE_BACKENDS = ("json", "sqlite", "memory")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "TimeLedger"
    environment: str = "development"
    host: str = os.getenv("TL_HOST", "127.0.0.1")
    port: int = int(os.getenv("TL_PORT", "8080"))
    log_level: str = os.getenv("TL_LOG_LEVEL", "INFO")

    storage_backend: str = os.getenv("TL_STORAGE", "json")
    sqlite_path: Path = Path(os.getenv("TL_SQLITE_PATH", "./data/timeledger.db"))
    json_dir: Path = Path(os.getenv("TL_JSON_DIR", "./data/state"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")

    history_depth: int = int(os.getenv("TL_HISTORY_DEPTH", "30"))
    snapshot_debounce_seconds: float = float(os.getenv("TL_SNAPSHOT_DEBOUNCE", "1.0"))
    live_refresh_seconds: float = float(os.getenv("TL_LIVE_REFRESH", "1.0"))
    heatmap_days: int = int(os.getenv("TL_HEATMAP_DAYS", "112"))

    color_hue_span: int = 330
    color_default_hue: int = int(os.getenv("TL_COLOR_DEFAULT_HUE", "152"))
    color_saturation: int = 65
    color_lightness: int = 50

    daily_quota_hours: float = float(os.getenv("TL_DAILY_QUOTA_HOURS", "8"))
    round_to_five: bool = os.getenv("TL_ROUND_TO_FIVE", "false").lower() == "true"

    crm_org_url: Optional[str] = os.getenv("TL_CRM_ORG_URL")
    crm_client_id: Optional[str] = os.getenv("TL_CRM_CLIENT_ID")
    crm_tenant_id: Optional[str] = os.getenv("TL_CRM_TENANT_ID")

    cors_origins: list[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("TL_CORS_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173").split(",")
            if origin.strip()
        ]
    )

    @field_validator("storage_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: str) -> str:
        normalized = (value or "json").strip().lower()
        if normalized not in STORAGE_BACKENDS:
            raise ValueError(f"Unknown storage backend '{value}'")
        return normalized

    @field_validator("history_depth", "heatmap_days")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, int(value))


settings = Settings()
