"""
ASR Configuration

Centralized configuration using Pydantic Settings.
All configuration is loaded from environment variables with sensible defaults.
"""

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from asr.core.exceptions import ConfigurationError


class LLMSettings(BaseSettings):
    """LLM provider configuration for the screening and adjudication oracles."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore"
    )

    provider: Literal["anthropic", "openai"] = Field(
        default="anthropic", alias="ASR_LLM_PROVIDER"
    )

    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-sonnet-4-20250514", alias="ANTHROPIC_MODEL")

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")

    # Screening is near-deterministic, adjudication fully deterministic
    screening_temperature: float = Field(
        default=0.1, ge=0.0, le=2.0, alias="ASR_SCREENING_TEMPERATURE"
    )
    adjudication_temperature: float = Field(
        default=0.0, ge=0.0, le=2.0, alias="ASR_ADJUDICATION_TEMPERATURE"
    )
    extraction_temperature: float = Field(
        default=0.1, ge=0.0, le=2.0, alias="ASR_EXTRACTION_TEMPERATURE"
    )
    seed: int = Field(default=42, alias="ASR_SEED")
    max_tokens: int = Field(default=4096, ge=1, alias="ASR_MAX_TOKENS")
    max_attempts: int = Field(default=3, ge=1, le=10, alias="ASR_LLM_MAX_ATTEMPTS")


class DedupeSettings(BaseSettings):
    """Deduplication thresholds."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore"
    )

    title_similarity: float = Field(default=0.85, gt=0.0, le=1.0, alias="ASR_TITLE_SIMILARITY")


class PipelineSettings(BaseSettings):
    """Stage execution configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore"
    )

    batch_size: int = Field(default=5, ge=1, le=100, alias="ASR_BATCH_SIZE")
    batch_delay_seconds: float = Field(default=1.0, ge=0.0, alias="ASR_BATCH_DELAY_SECONDS")
    fulltext_gate_blocking: bool = Field(default=True, alias="ASR_FULLTEXT_GATE_BLOCKING")
    pdfs_dir: Path = Field(default=Path("pdfs"), alias="ASR_PDFS_DIR")

    @field_validator("pdfs_dir", mode="before")
    @classmethod
    def resolve_path(cls, v: str | Path) -> Path:
        """Resolve path and expand user."""
        return Path(v).expanduser().resolve()


class StorageSettings(BaseSettings):
    """Storage configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore"
    )

    artifact_path: Path = Field(default=Path("~/.asr/artifacts"), alias="ASR_ARTIFACT_PATH")
    db_path: Path = Field(default=Path("~/.asr/asr.db"), alias="ASR_DB_PATH")

    @field_validator("artifact_path", "db_path", mode="before")
    @classmethod
    def resolve_path(cls, v: str | Path) -> Path:
        """Resolve path and expand user."""
        return Path(v).expanduser().resolve()


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )
    log_format: Literal["json", "text"] = Field(default="text", alias="LOG_FORMAT")


class FeatureFlags(BaseSettings):
    """Feature flags for optional functionality."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="", extra="ignore"
    )

    debug: bool = Field(default=False, alias="ASR_DEBUG")


class Settings(BaseSettings):
    """
    Main ASR settings aggregator.

    Usage:
        from asr.config import get_settings
        settings = get_settings()
        print(settings.pipeline.batch_size)
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    dedupe: DedupeSettings = Field(default_factory=DedupeSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        self.storage.artifact_path.mkdir(parents=True, exist_ok=True)
        self.storage.db_path.parent.mkdir(parents=True, exist_ok=True)


# Singleton pattern for settings
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    Raises:
        ConfigurationError: If the environment holds invalid values.
    """
    global _settings
    if _settings is None:
        try:
            _settings = Settings()
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid configuration",
                {"errors": [err["msg"] for err in e.errors()]},
            ) from e
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None


# =============================================================================
# LOGGING SETUP
# =============================================================================


class _JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(settings: Settings | None = None) -> None:
    """Configure the ``asr`` logger hierarchy from settings."""
    settings = settings or get_settings()

    handler = logging.StreamHandler()
    if settings.logging.log_format == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )

    root = logging.getLogger("asr")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.logging.log_level)
