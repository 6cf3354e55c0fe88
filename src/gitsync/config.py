"""Application configuration using Pydantic Settings.

Process-level knobs come from the environment. The repository list and
trigger settings live in the YAML deployment file, see
``gitsync.services.config_loader``.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Environment
    environment: Literal["dev", "staging", "prod"] = "dev"
    debug: bool = False

    # Deployment file
    config_path: str = "config.yaml"
    example_config_path: str = "config.example.yaml"

    # API Configuration
    api_host: str = "0.0.0.0"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Startup
    startup_deploy: bool = True

    # External command limits (seconds, 0 disables the limit)
    git_timeout_seconds: int = 300
    install_timeout_seconds: int = 1800
    build_timeout_seconds: int = 1800
    process_manager_timeout_seconds: float = 30.0

    # Shutdown
    shutdown_grace_seconds: float = 30.0

    # In-memory history of finished deployments
    recent_results_limit: int = 50

    # Observability
    tracing_enabled: bool = True
    otlp_endpoint: str = Field(default="", validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "prod"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
