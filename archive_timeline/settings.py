from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ARCHIVE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_title: str = Field(default="Archive Timeline API", description="FastAPI application title")
    app_description: str = Field(
        default="Team archive with fuzzy dates, AI enrichment and a timeline view",
        description="OpenAPI description",
    )
    allowed_origins: Any = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by CORS; comma-separated or JSON list",
    )
    log_level: str = Field(
        default="INFO",
        description="Application log level (DEBUG/INFO/WARNING/ERROR/CRITICAL)",
    )
    enable_request_logging: bool = Field(default=True, description="Log every completed request")

    db_path: Path = Field(
        default=DEFAULT_DATA_DIR / "archive.db",
        description="SQLite database file",
    )
    seed_default_facets: bool = Field(
        default=True,
        description="Populate the facet taxonomy on startup when the table is empty",
    )

    storage_backend: Literal["local", "s3"] = Field(default="local", description="Blob store for uploads")
    storage_path: Path = Field(
        default=DEFAULT_DATA_DIR / "uploads",
        description="Root directory for the local blob store",
    )
    public_url: str = Field(default="http://localhost:8000", description="Public base URL of the API")
    s3_bucket: str = Field(default="archive-timeline-files", description="S3 bucket for uploads")
    s3_region: str = Field(default="us-east-1", description="AWS region of the bucket")

    gemini_api_key: str = Field(default="", description="Gemini API key; AI features are off when empty")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini REST endpoint",
    )
    gemini_text_model: str = Field(default="gemini-2.0-flash-exp", description="Model for text generation")
    gemini_embedding_model: str = Field(default="text-embedding-004", description="Model for embeddings")
    gemini_timeout_seconds: int = Field(default=30, ge=1, le=300)
    ai_processing_default: bool = Field(
        default=True,
        description="Run AI enrichment on upload unless the form disables it",
    )

    max_upload_bytes: int = Field(default=100 * 1024 * 1024, ge=1024, description="Upload limit for non-video files")
    max_video_upload_bytes: int = Field(default=500 * 1024 * 1024, ge=1024, description="Upload limit for video files")
    max_characters: int = Field(
        default=200_000,
        ge=10_000,
        le=5_000_000,
        description="Extracted text is truncated to this many characters",
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                try:
                    return [str(origin) for origin in json.loads(raw)]
                except ValueError:
                    pass
            if raw == "*":
                return ["*"]
            return [origin.strip() for origin in raw.split(",") if origin.strip()]
        return list(value or [])

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        candidate = value.upper()
        if candidate not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            logging.getLogger("archive_timeline.settings").warning(
                "Unknown log level '%s', falling back to INFO.", value
            )
            return "INFO"
        return candidate


settings = Settings()
