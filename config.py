"""
Global configuration for the Trend Outlier Engine.

Detection thresholds and cohort defaults live in settings.yaml (see
engine_settings.py). This module only holds environment-driven settings
and paths.

API keys can be stored in database (preferred) or .env (fallback).
"""

import logging
import os
import sqlite3
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# ── Paths ──
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(os.getenv("ENGINE_DATA_DIR", PROJECT_ROOT / "data"))
DB_PATH = DATA_DIR / "trend_engine.db"
SETTINGS_PATH = Path(os.getenv("ENGINE_SETTINGS_PATH", PROJECT_ROOT / "settings.yaml"))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)


def get_api_key(service: str) -> str:
    """
    Get API key from database first, fall back to environment variable.

    Args:
        service: 'youtube'

    Returns:
        API key string or empty string if not found
    """
    if DB_PATH.exists():
        try:
            conn = sqlite3.connect(str(DB_PATH))
            try:
                row = conn.execute(
                    "SELECT api_key FROM api_credentials WHERE service = ?",
                    (service,)
                ).fetchone()
            finally:
                conn.close()

            if row:
                logger.debug(f"Found API key for '{service}' in database")
                return row[0]
            logger.debug(f"No API key for '{service}' in api_credentials table")
        except sqlite3.Error as e:
            logger.debug(f"Database lookup failed for '{service}': {e}")

    env_map = {
        'youtube': 'YOUTUBE_API_KEY',
    }

    env_var = env_map.get(service)
    if env_var:
        value = os.getenv(env_var, '')
        if not value:
            logger.warning(
                f"API key for '{service}' not found in database or "
                f"environment variable {env_var}. Collection will fail."
            )
        return value

    return ''


# ── YouTube Data API ──
YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
SOURCE_TIMEOUT_SECONDS = float(os.getenv("SOURCE_TIMEOUT_SECONDS", "15"))

# ── API server ──
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "5000"))

# ── Logging ──
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
