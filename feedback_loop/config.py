"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./feedback_loop.db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # ═══════════════════════════════════════════════════════════════
    # Feedback windows (cycles, newest first)
    # ═══════════════════════════════════════════════════════════════
    ACCURACY_WINDOW_CYCLES: int = 50   # Accuracy Engine default window (1-200)
    PATTERN_WINDOW_CYCLES: int = 20    # Pattern Detector default window
    HISTORY_MAX_CYCLES: int = 100      # Compression Engine max cycles rendered

    # Pattern persistence
    PATTERN_EVIDENCE_LIMIT: int = 20   # Max evidence entries stored per pattern row

    # ═══════════════════════════════════════════════════════════════
    # Context budget (estimated tokens, chars/4)
    # ═══════════════════════════════════════════════════════════════
    CONTEXT_SOFT_LIMIT_TOKENS: int = 50000    # Above this: warning
    CONTEXT_HARD_LIMIT_TOKENS: int = 150000   # Above this: invalid
    FULL_DETAIL_TOKENS_PER_CYCLE: int = 200   # Uncompressed cost estimate per cycle
    CAPACITY_PROJECTION_CYCLES: int = 100     # Cycle count used for capacity projection

    # Telemetry / Observability
    FEEDBACK_TELEMETRY_ENABLED: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
