"""
Module: config.py
Description: Environment-driven configuration for the Expense AI backend.

All settings are read from environment variables (optionally from a .env
file). Services receive the values they need through their constructors so
tests can build them without touching the environment.

Usage:
    from config import get_settings
    settings = get_settings()
"""

import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Snapshot of the process environment."""

    def __init__(self):
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        # Database
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./expense_ai.db")

        # JWT
        self.jwt_secret = os.getenv("JWT_SECRET", "change-me-in-production")
        self.jwt_algorithm = "HS256"
        self.jwt_expiration_hours = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))
        self.jwt_refresh_expiration_days = int(os.getenv("JWT_REFRESH_EXPIRATION_DAYS", "7"))

        # Development bypass
        self.auth_bypass = _as_bool(os.getenv("AUTH_BYPASS", "false"))
        self.auth_bypass_email = os.getenv("AUTH_BYPASS_EMAIL", "demo@example.com")

        # Gemini
        self.gemini_api_key = os.getenv("GEMINI_API_KEY", "").strip()
        self.gemini_base_url = os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
        ).rstrip("/")
        self.gemini_model = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
        self.gemini_timeout_seconds = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "30"))
        self.gemini_max_retries = int(os.getenv("GEMINI_MAX_RETRIES", "2"))

        # Circuit breaker
        self.circuit_failure_threshold = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5"))
        self.circuit_reset_seconds = float(os.getenv("CIRCUIT_RESET_SECONDS", "30"))

        # Response cache
        self.cache_ttl_seconds = float(os.getenv("CACHE_TTL_SECONDS", "600"))

        # Payments
        self.enable_mock_payments = _as_bool(
            os.getenv("ENABLE_MOCK_PAYMENTS", "true" if self.environment in ("development", "test") else "false")
        )

        # OAuth2
        self.google_client_id = os.getenv("GOOGLE_CLIENT_ID", "")
        self.google_client_secret = os.getenv("GOOGLE_CLIENT_SECRET", "")
        self.github_client_id = os.getenv("GITHUB_CLIENT_ID", "")
        self.github_client_secret = os.getenv("GITHUB_CLIENT_SECRET", "")
        self.oauth2_callback_base_url = os.getenv("OAUTH2_CALLBACK_BASE_URL", "http://localhost:8000").rstrip("/")
        self.oauth2_redirect_uri = os.getenv("OAUTH2_REDIRECT_URI", "http://localhost:5173/oauth2/redirect")

        # CORS
        self.cors_origins: List[str] = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"
            ).split(",")
            if origin.strip()
        ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings (cached)."""
    return Settings()
