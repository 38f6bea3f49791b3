"""
Configuration management for Scriptoria.

Uses pydantic-settings to load secrets and paths from environment variables
and .env files, and pydantic to load the JSON pipeline configuration.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.models.schemas import PipelineConfig


class ConfigurationError(Exception):
    """Raised when startup configuration is missing or invalid."""


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Neo4j Configuration
    database_backend: str = "neo4j"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "scriptoria"

    # API Configuration
    port: int = 8080
    log_level: str = "INFO"
    log_file_location: Optional[Path] = None
    api_title: str = "Scriptoria"
    api_version: str = "1.0.0"

    # Pipeline configuration file
    config_file_location: Path = Path("./config/config.json")
    local_storage_path: Optional[Path] = None

    # Google Drive
    google_service_key_file: Optional[Path] = None
    google_webhook_url: Optional[str] = None
    watch_renewal_interval: float = 30 * 60  # seconds

    # Local watcher
    local_watch_polling: bool = False

    # Mathpix
    mathpix_app_id: Optional[str] = None
    mathpix_app_key: Optional[str] = None
    mathpix_poll_interval: float = 5.0  # seconds
    mathpix_timeout: float = 600.0  # seconds

    # ChatGPT
    chatgpt_api_key: Optional[str] = None
    chatgpt_model: str = "gpt-4o"

    # Failure escalation
    failure_threshold: int = 3
    failure_window: float = 600.0  # seconds

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def require(self, *names: str) -> None:
        """
        Ensure the named settings are present.

        Args:
            names: Setting attribute names

        Raises:
            ConfigurationError: If any of them is unset or empty
        """
        missing = [name.upper() for name in names if not getattr(self, name, None)]
        if missing:
            raise ConfigurationError(
                f"Required environment variable(s) not present: {', '.join(missing)}"
            )


def load_pipeline_config(path: Path, settings: Optional[Settings] = None) -> PipelineConfig:
    """
    Load the JSON pipeline configuration.

    Args:
        path: Location of the config file
        settings: Optional settings; LOCAL_STORAGE_PATH overrides the temp folder

    Returns:
        Parsed pipeline configuration

    Raises:
        ConfigurationError: If the file can't be read or is invalid
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}") from e

    try:
        config = PipelineConfig.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e

    if settings is not None and settings.local_storage_path:
        config = config.model_copy(
            update={"temp_storage_folder": str(settings.local_storage_path)}
        )

    return config


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
