"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

# Models
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_REASON_MODEL: str = os.getenv("GEMINI_REASON_MODEL", "gemini-2.5-flash")

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Analysis output language: "en" or "uk"
LANGUAGES = ("en", "uk")
DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "en")

# Ingestion
INLINE_LIMIT_BYTES: int = int(os.getenv("INLINE_LIMIT_BYTES", str(20 * 1024 * 1024)))
MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(500 * 1024 * 1024)))
UPLOAD_POLL_INTERVAL: float = float(os.getenv("UPLOAD_POLL_INTERVAL", "2"))
UPLOAD_POLL_MAX_ATTEMPTS: int = int(os.getenv("UPLOAD_POLL_MAX_ATTEMPTS", "150"))

# Retry
RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY: float = float(os.getenv("RETRY_BASE_DELAY", "2"))

# Project history
HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "10"))

# Derived paths
SQLITE_PATH: Path = DATA_DIR / "researchoo.db"
UPLOADS_DIR: Path = DATA_DIR / "uploads"


def get_upload_dir(file_id: str) -> Path:
    """Return the directory an uploaded source file is stored under."""
    return UPLOADS_DIR / file_id


def language_name(language: str) -> str:
    """Map a language code to the name used in model instructions."""
    return "Ukrainian" if language == "uk" else "English"
