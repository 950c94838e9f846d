"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"


@dataclass(frozen=True)
class Settings:
    # --- Database ---
    database_url: str = os.getenv(
        "TYPING_ENGINE_DB_URL", f"sqlite+aiosqlite:///{DATA_DIR / 'typingtherapy.db'}"
    )

    # --- Emotion prediction service (external facemesh classifier) ---
    emotion_service_url: str = os.getenv("EMOTION_SERVICE_URL", "http://127.0.0.1:5001")
    emotion_service_timeout: float = float(os.getenv("EMOTION_SERVICE_TIMEOUT", "10"))
    emotion_buffer_sessions: int = int(os.getenv("EMOTION_BUFFER_SESSIONS", "500"))  # oldest dropped beyond this
    emotion_buffer_size: int = int(os.getenv("EMOTION_BUFFER_SIZE", "200"))  # per-session cap

    # --- Word bank ---
    word_bank_path: str = os.getenv("WORD_BANK_PATH", "")

    # --- Typing analysis ---
    auto_analysis_threshold: int = 10  # results needed before the first auto report
    severe_below: int = 60
    moderate_below: int = 80
    confusion_pairs_per_letter: int = 2
    recommendation_limit: int = 5

    # --- Session store ---
    max_write_retries: int = int(os.getenv("MAX_WRITE_RETRIES", "8"))  # optimistic-lock attempts per mutation
    write_retry_backoff: float = float(os.getenv("WRITE_RETRY_BACKOFF", "0.02"))  # seconds, doubled per retry

    # --- Scheduled sweep for sessions missing a cached report ---
    analysis_sweep_hour_utc: int = int(os.getenv("ANALYSIS_SWEEP_HOUR_UTC", "2"))

    # --- Defaults ---
    default_therapist_username: str = os.getenv("DEFAULT_THERAPIST_USERNAME", "therapist")
    default_therapist_code: str = os.getenv("DEFAULT_THERAPIST_CODE", "100200")


settings = Settings()

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
