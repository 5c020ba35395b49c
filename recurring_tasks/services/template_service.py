"""Recurring template service: creation and edits with pattern validation."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Session

from recurring_tasks.exceptions import InvalidPattern, TemplateNotFound
from recurring_tasks.models.recurrence_rule import RecurrencePattern
from recurring_tasks.models.recurring_template import RecurringTemplate
from recurring_tasks.services.occurrence_calculator import ONE_DAY, next_occurrence
from recurring_tasks.services.recurrence_validator import RecurrenceValidator


class TemplateService:
    """Service class for recurring templates."""

    def __init__(self, session: Session):
        self.session = session

    def create_template(
        self,
        user_id: str,
        title: str,
        pattern: Dict[str, Any],
        anchor_date: date,
        description: Optional[str] = None,
        priority: str = "medium",
        tags: Optional[List[str]] = None,
        estimated_duration: Optional[int] = None,
    ) -> RecurringTemplate:
        """
        Create a recurring template.

        Raises:
            InvalidPattern: If the pattern violates a constraint
        """
        recurrence = RecurrenceValidator.parse_pattern(pattern, anchor_date)

        template = RecurringTemplate(
            user_id=user_id,
            title=title,
            description=description,
            priority=priority,
            tags=tags or [],
            estimated_duration=estimated_duration,
            pattern=recurrence.to_json(),
            anchor_date=anchor_date,
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
        )

        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def get_template(self, template_id: int) -> RecurringTemplate:
        template = self.session.get(RecurringTemplate, template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return template

    def update_template(self, template_id: int, **changes: Any) -> RecurringTemplate:
        """
        Edit a template.

        Pattern or anchor changes affect only dates after the generation cursor;
        existing instances, the cursor and the occurrence count are left alone.
        A template that stopped at its end condition is re-activated when the
        edited pattern has dates left; a paused template stays paused.

        Raises:
            TemplateNotFound: If the template does not exist
            InvalidPattern: If the resulting pattern violates a constraint
        """
        template = self.get_template(template_id)
        changes = {key: value for key, value in changes.items() if value is not None}

        pattern_changed = "pattern" in changes or "anchor_date" in changes
        if pattern_changed:
            anchor_date = changes.get("anchor_date", template.anchor_date)
            raw_pattern = changes.get("pattern", template.pattern)
            recurrence = RecurrenceValidator.parse_pattern(raw_pattern, anchor_date)
            changes["pattern"] = recurrence.to_json()
            changes["anchor_date"] = anchor_date

            # A template the user paused stays paused
            if "active" not in changes and (template.active or _series_finished(template)):
                under_limit = (
                    recurrence.max_occurrences is None
                    or template.occurrences_generated < recurrence.max_occurrences
                )
                upcoming = _first_uncovered(recurrence, anchor_date, template.generated_until)
                changes["active"] = under_limit and upcoming is not None

        for key, value in changes.items():
            setattr(template, key, value)
        template.updated_at = datetime.utcnow()

        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    @staticmethod
    def next_occurrence_for(template: RecurringTemplate) -> Optional[date]:
        """First occurrence not yet covered by the template's cursor."""
        if not template.active:
            return None
        recurrence = RecurrenceValidator.parse_pattern(template.pattern)
        return _first_uncovered(recurrence, template.anchor_date, template.generated_until)


def _first_uncovered(recurrence: RecurrencePattern, anchor_date: date, generated_until: Optional[date]) -> Optional[date]:
    after = generated_until if generated_until is not None else anchor_date - ONE_DAY
    return next_occurrence(recurrence, anchor_date, after)


def _series_finished(template: RecurringTemplate) -> bool:
    """Whether the stored pattern reached its end condition, as opposed to a pause."""
    try:
        recurrence = RecurrenceValidator.parse_pattern(template.pattern)
    except InvalidPattern:
        return False
    if recurrence.max_occurrences is not None and template.occurrences_generated >= recurrence.max_occurrences:
        return True
    return _first_uncovered(recurrence, template.anchor_date, template.generated_until) is None
