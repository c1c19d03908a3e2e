# backend/config.py
"""
Runtime configuration for the CV optimizer backend.

Values come from environment variables; a `.env` file next to this module is
loaded first so local development works without exporting anything.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)

TRUTHY_ENV_VALUES = {"1", "true", "yes", "on"}

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY_ENV_VALUES


def env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def parse_cors_origins(value: Optional[str]) -> List[str]:
    if not value:
        return DEFAULT_CORS_ORIGINS
    origins = [origin.strip() for origin in value.split(",") if origin.strip()]
    return origins or DEFAULT_CORS_ORIGINS


class Settings(BaseModel):
    openai_api_key: Optional[str] = None

    analyze_model: str = "gpt-4o-mini"
    optimize_model: str = "gpt-4o"
    chat_model: str = "gpt-4o-mini"

    # Low temperature keeps analyze/optimize output stable
    analyze_temperature: float = 0.1
    optimize_temperature: float = 0.1
    chat_temperature: float = 0.7

    database_url: str = "sqlite:///./cv_optimizer.db"

    paywall_enabled: bool = True
    price_amount: int = 39
    price_currency: str = "EGP"
    payment_processing_delay: float = 2.5
    payment_success_delay: float = 2.0

    max_upload_bytes: int = 10 * 1024 * 1024
    chat_history_limit: int = 10

    cors_allow_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            analyze_model=os.getenv("ANALYZE_MODEL", "gpt-4o-mini"),
            optimize_model=os.getenv("OPTIMIZE_MODEL", "gpt-4o"),
            chat_model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
            analyze_temperature=env_float("ANALYZE_TEMPERATURE", 0.1),
            optimize_temperature=env_float("OPTIMIZE_TEMPERATURE", 0.1),
            chat_temperature=env_float("CHAT_TEMPERATURE", 0.7),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./cv_optimizer.db"),
            paywall_enabled=env_flag("PAYWALL_ENABLED", True),
            price_amount=env_int("PRICE_AMOUNT", 39),
            price_currency=os.getenv("PRICE_CURRENCY", "EGP"),
            payment_processing_delay=env_float("PAYMENT_PROCESSING_DELAY", 2.5),
            payment_success_delay=env_float("PAYMENT_SUCCESS_DELAY", 2.0),
            max_upload_bytes=env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            chat_history_limit=env_int("CHAT_HISTORY_LIMIT", 10),
            cors_allow_origins=parse_cors_origins(os.getenv("CORS_ALLOW_ORIGINS")),
        )


_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the cached Settings instance."""
    global _settings_instance

    if _settings_instance is None:
        _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings():
    """Drop the cached settings so the environment is re-read (used by tests)."""
    global _settings_instance
    _settings_instance = None
