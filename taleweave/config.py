"""Configuration management for Taleweave."""

import os
from pathlib import Path

from dotenv import load_dotenv


# Load environment variables from .env file
def _find_env_file() -> Path | None:
    """Find the .env file, searching up the directory tree."""
    current = Path(__file__).parent
    for _ in range(5):  # Search up to 5 levels
        env_path = current / ".env"
        if env_path.exists():
            return env_path
        current = current.parent
    return None


_env_file = _find_env_file()
if _env_file:
    load_dotenv(_env_file)


class Config:
    """Application configuration from environment variables."""

    # Record store
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./taleweave.db")

    # Generation adapter
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    GENERATION_MODEL: str = os.getenv("GENERATION_MODEL", "")  # Empty = provider default

    # Local asset store
    ASSET_DIR: str = os.getenv("ASSET_DIR", "./data/assets")

    # Resource pool regeneration, seconds per unit
    TOKEN_REGEN_SECONDS: int = int(os.getenv("TOKEN_REGEN_SECONDS", "3600"))
    BOOKMARK_REGEN_SECONDS: int = int(os.getenv("BOOKMARK_REGEN_SECONDS", "3600"))

    # Logging / debug
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    @classmethod
    def validate(cls) -> list[str]:
        """Validate configuration, return list of issues."""
        issues = []

        if not cls.ANTHROPIC_API_KEY:
            issues.append(
                "No generation API key configured. "
                "Set ANTHROPIC_API_KEY in .env or inject a GenerationService."
            )
        if cls.TOKEN_REGEN_SECONDS <= 0 or cls.BOOKMARK_REGEN_SECONDS <= 0:
            issues.append("Regeneration intervals must be positive.")

        return issues

    @classmethod
    def is_debug(cls) -> bool:
        """Check if debug mode is enabled."""
        return cls.DEBUG

    @classmethod
    def get_database_url(cls) -> str:
        """Get the database URL (read live so tests can override it)."""
        return os.getenv("DATABASE_URL", cls.DATABASE_URL)


# Singleton config instance
config = Config()
