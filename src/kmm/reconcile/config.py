"""Service settings, read from KMM_* environment variables or .env."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KMM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    service_name: str = "kmm-reconcile"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # HTTP API
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=list)

    # Clusters and environment tags
    inventory_path: Path = Field(default=Path("clusters.yaml"))

    # Per-request timeout against each cluster's admin API (seconds)
    request_timeout: float = 30.0

    # Report destination-only entities unless a request says otherwise
    default_two_way: bool = True

    # Audit trail
    audit_enabled: bool = True
    audit_json: bool | None = None  # None: JSON everywhere except development
    audit_log_values: bool = False  # Entity definitions may carry secrets

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def allowed_origins(self) -> list[str]:
        """CORS origins; any origin is accepted in development when none are set."""
        if self.cors_origins:
            return self.cors_origins
        return ["*"] if self.is_development else []

    @property
    def audit_json_format(self) -> bool:
        if self.audit_json is not None:
            return self.audit_json
        return not self.is_development


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Module-level settings singleton."""
    return settings
