"""Configuration management for TableDM.

Settings come from the environment. A ``.env`` file in the package
directory or any of its parents is loaded first.
"""

import os
from pathlib import Path

from dotenv import load_dotenv


def _find_env_file() -> Path | None:
    here = Path(__file__).resolve().parent
    for directory in (here, *here.parents):
        candidate = directory / ".env"
        if candidate.is_file():
            return candidate
    return None


_env_file = _find_env_file()
if _env_file:
    load_dotenv(_env_file)


def _int_env(name: str, default: int) -> int:
    """Integer setting; unset or unparseable values fall back to ``default``."""
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application settings, read once at import."""

    # Narration oracle
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "")  # empty = first provider with a key
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    NARRATOR_MODEL: str = os.getenv("NARRATOR_MODEL", "")
    LLM_MAX_RETRIES: int = _int_env("LLM_MAX_RETRIES", 3)

    # Storage
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./tabledm.db")
    COMBAT_WRITE_RETRIES: int = _int_env("COMBAT_WRITE_RETRIES", 3)

    # Realtime stream
    SSE_KEEPALIVE_SECONDS: int = _int_env("SSE_KEEPALIVE_SECONDS", 30)

    DEBUG: bool = _bool_env("DEBUG")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> list[str]:
        """Problems worth warning about at startup. Empty when all is well."""
        issues = []
        if not cls.ANTHROPIC_API_KEY:
            issues.append("ANTHROPIC_API_KEY is not set; narration is unavailable")
        if cls.COMBAT_WRITE_RETRIES < 1:
            issues.append("COMBAT_WRITE_RETRIES must be at least 1")
        if cls.LLM_MAX_RETRIES < 0:
            issues.append("LLM_MAX_RETRIES cannot be negative")
        if cls.SSE_KEEPALIVE_SECONDS < 1:
            issues.append("SSE_KEEPALIVE_SECONDS must be at least 1")
        return issues

    @classmethod
    def get_available_providers(cls) -> list[str]:
        return ["anthropic"] if cls.ANTHROPIC_API_KEY else []

    @classmethod
    def get_primary_provider(cls) -> str:
        if cls.LLM_PROVIDER:
            return cls.LLM_PROVIDER.lower()
        available = cls.get_available_providers()
        return available[0] if available else "none"

    @classmethod
    def is_debug(cls) -> bool:
        return cls.DEBUG

    @classmethod
    def get_database_url(cls) -> str:
        """Looked up at call time so tests can point at another database."""
        return os.getenv("DATABASE_URL", cls.DATABASE_URL)


config = Config()
