"""Configuration utilities for the ScheduleScan backend."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


def _env_flag(name: str, default: bool) -> bool:
    """Return a boolean flag derived from environment variables."""

    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent
DEFAULT_PROMPTS_DIR = BASE_DIR / "resources" / "prompts"

EXTRACTION_STRATEGIES = ("two_pass", "single_pass")
TRANSCRIPTION_ENGINES = ("llm", "pymupdf")
SOURCE_STRATEGIES = ("download", "url")


def _load_environment() -> None:
    """Load environment variables from a ``.env`` file if present."""

    explicit_path = os.getenv("SCHEDULESCAN_ENV_FILE")
    candidates = []

    if explicit_path:
        candidates.append(Path(explicit_path))

    candidates.append(PROJECT_ROOT / ".env")

    for candidate in candidates:
        try_path = candidate.expanduser()
        if try_path.exists():
            load_dotenv(try_path, override=False)


_load_environment()


def _database_url_default() -> str:
    """Return the configured database URL using legacy fallbacks."""

    return (
        os.getenv("DATABASE_URL") or os.getenv("DB_URL") or "sqlite:///./schedulescan.db"
    )


def _cors_origin_regex_default() -> str | None:
    """Return the default CORS origin regex allowing local network hosts."""

    raw = os.getenv(
        "CORS_ALLOW_ORIGIN_REGEX",
        r"http://(?:localhost|127\.0\.0\.1|0\.0\.0\.0|(?:\d{1,3}\.){3}\d{1,3})(?::\d{1,5})?",
    )
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _optional_path(name: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return Path(raw.strip())


class Settings(BaseModel):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(default_factory=_database_url_default)
    storage_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("STORAGE_DIR", str(PROJECT_ROOT / "storage"))
        )
    )
    storage_bucket: str = Field(
        default_factory=lambda: os.getenv("STORAGE_BUCKET", "pdfs")
    )
    storage_public_base_url: str | None = Field(
        default_factory=lambda: (os.getenv("STORAGE_PUBLIC_BASE_URL") or "").strip()
        or None
    )
    max_upload_size: int = Field(
        default_factory=lambda: int(os.getenv("MAX_UPLOAD_SIZE", str(20 * 1024 * 1024)))
    )
    allowed_mimetypes: Tuple[str, ...] = Field(
        default_factory=lambda: tuple(
            mime.strip()
            for mime in os.getenv("ALLOWED_MIMETYPES", "application/pdf").split(",")
            if mime.strip()
        )
    )
    cors_allow_origins: Tuple[str, ...] = Field(default_factory=tuple)
    cors_allow_origin_regex: str | None = Field(default_factory=_cors_origin_regex_default)
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "info"))
    llm_provider: str = Field(
        default_factory=lambda: os.getenv("LLM_PROVIDER", "openrouter")
    )
    openrouter_api_key: str | None = Field(
        default_factory=lambda: os.getenv("OPENROUTER_API_KEY")
    )
    openrouter_model: str = Field(
        default_factory=lambda: os.getenv(
            "OPENROUTER_MODEL", "google/gemini-2.5-flash"
        )
    )
    openrouter_http_referer: str | None = Field(
        default_factory=lambda: os.getenv("OPENROUTER_SITE_URL")
        or os.getenv("HTTP_REFERER")
    )
    openrouter_title: str | None = Field(
        default_factory=lambda: os.getenv("OPENROUTER_X_TITLE")
        or os.getenv("X_TITLE")
    )
    ollama_url: str = Field(
        default_factory=lambda: os.getenv(
            "OLLAMA_URL", "http://127.0.0.1:11434/api/chat"
        )
    )
    llm_timeout_s: int = Field(
        default_factory=lambda: int(os.getenv("LLM_TIMEOUT_S", "120"))
    )
    llm_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("LLM_MAX_RETRIES", "0"))
    )
    llm_cache_enabled: bool = Field(
        default_factory=lambda: _env_flag("LLM_CACHE_ENABLED", False)
    )
    llm_cache_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("LLM_CACHE_DIR", ".cache/llm"))
    )
    extraction_strategy: str = Field(
        default_factory=lambda: os.getenv("EXTRACTION_STRATEGY", "two_pass")
    )
    transcription_engine: str = Field(
        default_factory=lambda: os.getenv("TRANSCRIPTION_ENGINE", "llm")
    )
    source_strategy: str = Field(
        default_factory=lambda: os.getenv("SOURCE_STRATEGY", "download")
    )
    transcription_prompt_path: Path | None = Field(
        default_factory=lambda: _optional_path("TRANSCRIPTION_PROMPT_PATH")
    )
    extraction_prompt_path: Path | None = Field(
        default_factory=lambda: _optional_path("EXTRACTION_PROMPT_PATH")
    )
    stale_processing_timeout_s: int = Field(
        default_factory=lambda: int(os.getenv("STALE_PROCESSING_TIMEOUT_S", "900"))
    )

    @field_validator("storage_dir", mode="after")
    @classmethod
    def _ensure_storage_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("allowed_mimetypes", mode="after")
    @classmethod
    def _normalise_mimetypes(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if not value:
            return ("application/pdf",)
        return tuple(dict.fromkeys(item.lower() for item in value))

    @field_validator("extraction_strategy", mode="after")
    @classmethod
    def _check_extraction_strategy(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in EXTRACTION_STRATEGIES:
            raise ValueError(
                f"EXTRACTION_STRATEGY must be one of {', '.join(EXTRACTION_STRATEGIES)}"
            )
        return value

    @field_validator("transcription_engine", mode="after")
    @classmethod
    def _check_transcription_engine(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in TRANSCRIPTION_ENGINES:
            raise ValueError(
                f"TRANSCRIPTION_ENGINE must be one of {', '.join(TRANSCRIPTION_ENGINES)}"
            )
        return value

    @field_validator("source_strategy", mode="after")
    @classmethod
    def _check_source_strategy(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in SOURCE_STRATEGIES:
            raise ValueError(
                f"SOURCE_STRATEGY must be one of {', '.join(SOURCE_STRATEGIES)}"
            )
        return value

    @field_validator("llm_max_retries", "stale_processing_timeout_s", mode="after")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached settings so that subsequent calls reload from the environment."""

    get_settings.cache_clear()
