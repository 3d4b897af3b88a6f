"""
Application settings.

Loaded from environment variables; the Streamlit app overlays its secrets
for the API keys.
"""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Settings:
    tmdb_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    language: str = "en-US"

    session_timeout_minutes: int = 60
    max_participants: int = 8
    min_participants: int = 2
    voting_time_seconds: int = 60
    shortlist_size: int = 3
    recommendation_delay_seconds: float = 1.5
    poll_interval_seconds: float = 1.0
    room_code_attempts: int = 20

    deep_link_scheme: str = "quickpick"
    db_path: Path = Path("data") / "sessions.db"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            tmdb_api_key=os.getenv("TMDB_API_KEY") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            language=os.getenv("QUICKPICK_LANGUAGE", defaults.language),
            session_timeout_minutes=_int_env(
                "QUICKPICK_SESSION_TIMEOUT_MINUTES", defaults.session_timeout_minutes
            ),
            max_participants=_int_env("QUICKPICK_MAX_PARTICIPANTS", defaults.max_participants),
            min_participants=_int_env("QUICKPICK_MIN_PARTICIPANTS", defaults.min_participants),
            voting_time_seconds=_int_env(
                "QUICKPICK_VOTING_TIME_SECONDS", defaults.voting_time_seconds
            ),
            shortlist_size=_int_env("QUICKPICK_SHORTLIST_SIZE", defaults.shortlist_size),
            recommendation_delay_seconds=_float_env(
                "QUICKPICK_RECOMMENDATION_DELAY_SECONDS",
                defaults.recommendation_delay_seconds,
            ),
            poll_interval_seconds=_float_env(
                "QUICKPICK_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds
            ),
            room_code_attempts=_int_env(
                "QUICKPICK_ROOM_CODE_ATTEMPTS", defaults.room_code_attempts
            ),
            deep_link_scheme=os.getenv("QUICKPICK_DEEP_LINK_SCHEME", defaults.deep_link_scheme),
            db_path=Path(os.getenv("QUICKPICK_DB_PATH", str(defaults.db_path))),
            log_level=os.getenv("QUICKPICK_LOG_LEVEL", defaults.log_level).upper(),
        )

    def with_keys(self, tmdb_api_key=None, openai_api_key=None) -> "Settings":
        return replace(
            self,
            tmdb_api_key=tmdb_api_key or self.tmdb_api_key,
            openai_api_key=openai_api_key or self.openai_api_key,
        )


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _int_env(key, default):
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}") from None


def _float_env(key, default):
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {value!r}") from None
