"""Configuration for the recurring task service, read from the environment."""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./recurring_tasks.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _optional_float(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    return float(raw)


@dataclass
class GenerationSettings:
    """Settings controlling how far ahead and how often instances are generated."""
    lookahead_days: int = 90  # generation horizon
    timezone: str = "UTC"  # zone used to turn "now" into a calendar date
    interval_seconds: int = 86400  # worker period between batch runs
    batch_timeout_seconds: Optional[float] = None

    @classmethod
    def from_env(cls) -> "GenerationSettings":
        return cls(
            lookahead_days=int(os.getenv("GENERATION_LOOKAHEAD_DAYS", "90")),
            timezone=os.getenv("GENERATION_TIMEZONE", "UTC"),
            interval_seconds=int(os.getenv("GENERATION_INTERVAL_SECONDS", "86400")),
            batch_timeout_seconds=_optional_float(os.getenv("GENERATION_BATCH_TIMEOUT_SECONDS")),
        )


_settings: Optional[GenerationSettings] = None


def get_generation_settings() -> GenerationSettings:
    """Return the process-wide generation settings."""
    global _settings
    if _settings is None:
        _settings = GenerationSettings.from_env()
    return _settings
