"""Recurrence Validator."""
from datetime import date
from typing import Any, Dict, Optional

from pydantic import ValidationError

from recurring_tasks.exceptions import InvalidPattern
from recurring_tasks.models.recurrence_rule import Frequency, RecurrencePattern
from recurring_tasks.schemas.recurrence import RecurrencePatternInput
from recurring_tasks.services.occurrence_calculator import sunday_index

FREQUENCIES = [frequency.value for frequency in Frequency]
WEEKEND_DAYS = {0, 6}  # Sunday, Saturday


class RecurrenceValidator:
    """Validate recurrence patterns for recurring templates."""

    @staticmethod
    def validate_recurrence_pattern(raw: Any, anchor_date: Optional[date] = None) -> Dict[str, Any]:
        """
        Validate a raw recurrence pattern.

        Args:
            raw: Pattern mapping (snake_case or camelCase keys)
            anchor_date: Template anchor date, used to check end_date

        Returns:
            Dict with validation result
        """
        result = {
            "valid": True,
            "errors": [],
            "warnings": []
        }

        if not isinstance(raw, dict):
            result["valid"] = False
            result["errors"].append("Recurrence pattern must be an object")
            return result

        try:
            data = RecurrencePatternInput.model_validate(raw)
        except ValidationError as e:
            result["valid"] = False
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"]) or "pattern"
                result["errors"].append(f"{location}: {error['msg']}")
            return result

        frequency = data.frequency.strip().lower()
        if frequency not in FREQUENCIES:
            result["errors"].append(f"Frequency must be one of: {', '.join(FREQUENCIES)}, got: {data.frequency}")

        if data.interval < 1:
            result["errors"].append(f"Interval must be at least 1, got {data.interval}")

        if data.day_of_month is not None and not 1 <= data.day_of_month <= 31:
            result["errors"].append(f"Day of month must be between 1 and 31, got {data.day_of_month}")

        for day in data.days_of_week or []:
            if not 0 <= day <= 6:
                result["errors"].append(f"Day of week must be between 0 (Sunday) and 6 (Saturday), got {day}")

        if data.max_occurrences is not None and data.max_occurrences < 1:
            result["errors"].append(f"Max occurrences must be at least 1, got {data.max_occurrences}")

        if data.end_date is not None and anchor_date is not None and data.end_date < anchor_date:
            result["errors"].append(
                f"End date {data.end_date.isoformat()} is before anchor date {anchor_date.isoformat()}"
            )

        # Fields the frequency ignores are tolerated
        if data.days_of_week and frequency != Frequency.WEEKLY.value:
            result["warnings"].append("Days of week are only used by weekly patterns")
        if data.day_of_month is not None and frequency != Frequency.MONTHLY.value:
            result["warnings"].append("Day of month is only used by monthly patterns")
        if data.end_date is not None and data.max_occurrences is not None:
            result["warnings"].append("Both end date and max occurrences are set; the earlier limit applies")

        if frequency == Frequency.WEEKLY.value and data.skip_weekends:
            days = set(data.days_of_week or [])
            if not days and anchor_date is not None:
                days = {sunday_index(anchor_date)}
            if days and days <= WEEKEND_DAYS:
                result["warnings"].append("Weekly days fall only on weekends, which skip_weekends drops; no dates will be generated")

        if result["errors"]:
            result["valid"] = False

        return result

    @staticmethod
    def parse_pattern(raw: Any, anchor_date: Optional[date] = None) -> RecurrencePattern:
        """
        Build a RecurrencePattern from raw input.

        Raises:
            InvalidPattern: listing every violated constraint
        """
        validation = RecurrenceValidator.validate_recurrence_pattern(raw, anchor_date)
        if not validation["valid"]:
            raise InvalidPattern(validation["errors"])

        data = RecurrencePatternInput.model_validate(raw)
        return RecurrencePattern(
            frequency=Frequency(data.frequency.strip().lower()),
            interval=data.interval,
            days_of_week=tuple(sorted(set(data.days_of_week or []))),
            day_of_month=data.day_of_month,
            end_date=data.end_date,
            max_occurrences=data.max_occurrences,
            skip_weekends=data.skip_weekends,
        )
