"""Configuration management for staterecon."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()


def _parse_cors_origins() -> list[str]:
    """Parse CORS origins from environment variable."""
    cors_env = os.getenv("CORS_ALLOW_ORIGINS")
    if cors_env:
        return cors_env.split(",")
    return ["*"]


def _parse_retry_delays() -> list[int]:
    """Parse caller retry delays (milliseconds) from environment variable."""
    delays_env = os.getenv("RETRY_DELAYS_MS")
    if delays_env:
        return [int(part) for part in delays_env.split(",") if part.strip()]
    return [250, 1000]


class Settings(BaseModel):
    """Application settings."""

    # Database path for the record store, catalogue and audit tables
    database_path: Path = Path(os.getenv("DATABASE_PATH", "data/staterecon.db"))

    # Record store target
    records_table: str = os.getenv("RECORDS_TABLE", "creators")
    state_field: str = os.getenv("STATE_FIELD", "state")

    # Matching and auto-selection policy
    auto_threshold: int = Field(default=int(os.getenv("AUTO_THRESHOLD", "90")), ge=0, le=100)
    auto_margin: int = Field(default=int(os.getenv("AUTO_MARGIN", "10")), ge=0, le=100)
    match_min_score: int = Field(default=int(os.getenv("MATCH_MIN_SCORE", "50")), ge=0, le=100)
    max_candidates: int = Field(default=int(os.getenv("MAX_CANDIDATES", "5")), ge=1, le=5)
    chunk_size: int = Field(default=int(os.getenv("CHUNK_SIZE", "100")), ge=1)

    # Remote calls
    remote_timeout_ms: int = Field(default=int(os.getenv("REMOTE_TIMEOUT_MS", "30000")), gt=0)
    retry_delays_ms: list[int] = Field(default_factory=_parse_retry_delays)

    # Role required for destructive actions (batch commit)
    commit_required_role: str = os.getenv("COMMIT_REQUIRED_ROLE", "super_admin")

    # In-memory limits: idle reconciliation sessions and cached permission gates
    session_ttl_seconds: int = Field(default=int(os.getenv("SESSION_TTL_SECONDS", "3600")), gt=0)
    gate_cache_size: int = Field(default=int(os.getenv("GATE_CACHE_SIZE", "256")), ge=1)

    # Server settings
    host: str = os.getenv("HOST", "127.0.0.1")
    port: int = int(os.getenv("PORT", "8000"))
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"
    cors_allow_origins: list[str] = Field(default_factory=_parse_cors_origins)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @model_validator(mode="after")
    def _check_policy(self) -> "Settings":
        if self.match_min_score > self.auto_threshold:
            raise ValueError("match_min_score must not exceed auto_threshold")
        if any(delay < 0 for delay in self.retry_delays_ms):
            raise ValueError("retry_delays_ms must be non-negative")
        return self

    @property
    def remote_timeout_seconds(self) -> float:
        return self.remote_timeout_ms / 1000.0

    def with_overrides(self, **overrides: Optional[object]) -> "Settings":
        """Return a copy with the given non-None fields replaced."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return self.model_copy(update=values)


settings = Settings()
