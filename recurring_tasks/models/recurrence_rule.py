"""Recurrence pattern value object."""
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class Frequency(str, Enum):
    """Unit a recurrence repeats in."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RecurrencePattern(BaseModel):
    """
    Immutable description of how a recurring template repeats.

    Instances are built by RecurrenceValidator.parse_pattern, which enforces the
    constraints below; constructing one directly skips those checks.

    Attributes:
        frequency: Unit of repetition
        interval: Repeat every N units of frequency (>= 1)
        days_of_week: Weekday indices, 0=Sunday .. 6=Saturday (weekly only)
        day_of_month: 1-31, clamped to shorter months (monthly only)
        end_date: No occurrences strictly after this date
        max_occurrences: At most this many occurrences ever
        skip_weekends: Drop candidates falling on Saturday or Sunday
    """
    model_config = ConfigDict(frozen=True)

    frequency: Frequency
    interval: int = 1
    days_of_week: Tuple[int, ...] = ()
    day_of_month: Optional[int] = None
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    skip_weekends: bool = False

    def to_json(self) -> Dict[str, Any]:
        """Serialize for the template's JSON column."""
        return self.model_dump(mode="json")
