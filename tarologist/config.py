"""Environment-driven settings.

Values come from the process environment, optionally seeded from a `.env`
file at the repository root.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]

load_dotenv(REPO_ROOT / ".env")


def _flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self) -> None:
        self.store_backend = os.getenv("TAROLOGIST_STORE", "memory").strip().lower()
        self.firebase_project_id = os.getenv("FIREBASE_PROJECT_ID") or None
        self.firebase_credentials = os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or None
        self.firebase_api_key = os.getenv("FIREBASE_API_KEY") or None
        self.email_domain = os.getenv("TAROLOGIST_EMAIL_DOMAIN", "example.com")

        cache_path = os.getenv("TAROLOGIST_CACHE_PATH", os.path.join("data", "local_cache.sqlite"))
        if cache_path != ":memory:" and not os.path.isabs(cache_path):
            cache_path = str(REPO_ROOT / cache_path)
        self.cache_path = cache_path

        self.openai_api_key = (os.getenv("OPENAI_API_KEY") or "").strip() or None
        self.openai_model = os.getenv("TAROLOGIST_OPENAI_MODEL", "gpt-4o-mini")
        self.use_openai = _flag(os.getenv("TAROLOGIST_USE_OPENAI"), default=True) and bool(self.openai_api_key)

        self.log_level = os.getenv("TAROLOGIST_LOG_LEVEL", "INFO").upper()
        self.cors_origins: List[str] = [
            o.strip() for o in os.getenv("TAROLOGIST_CORS_ORIGINS", "*").split(",") if o.strip()
        ]


def get_settings() -> Settings:
    return Settings()
