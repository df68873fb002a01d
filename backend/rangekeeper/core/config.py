"""
Rangekeeper - Application Configuration
Pydantic Settings with environment variable support
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RANGEKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "Rangekeeper"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "production"

    # ==========================================================================
    # Server
    # ==========================================================================
    host: str = "0.0.0.0"
    port: int = 8000

    # ==========================================================================
    # Storage
    # ==========================================================================
    # None keeps the registry in memory only
    database_url: Optional[str] = None
    database_echo: bool = False

    # ==========================================================================
    # Orchestrator
    # ==========================================================================
    deploy_timeout_seconds: float = Field(default=300.0, gt=0)
    verify_timeout_seconds: float = Field(default=120.0, gt=0)
    revoke_timeout_seconds: float = Field(default=300.0, gt=0)
    verify_poll_interval_seconds: float = Field(default=5.0, ge=0)
    deploy_max_attempts: int = Field(default=3, ge=1)
    deploy_retry_wait_seconds: float = Field(default=2.0, ge=0)
    stage_max_concurrency: int = Field(default=8, ge=1)
    # Grace period for running executions to settle after an abort on shutdown
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)

    # ==========================================================================
    # Health Intake
    # ==========================================================================
    health_probe_timeout_seconds: float = Field(default=10.0, gt=0)
    recovery_mode: Literal["auto", "manual"] = "auto"
    recovery_cooldown_seconds: float = Field(default=60.0, ge=0)
    max_recovery_attempts: int = Field(default=5, ge=1)

    # ==========================================================================
    # CORS
    # ==========================================================================
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | List[str]) -> List[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # ==========================================================================
    # Logging
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
