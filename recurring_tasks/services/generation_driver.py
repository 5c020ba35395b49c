"""
Generation Driver.

Materialises task instances for active recurring templates up to the lookahead
horizon and advances each template's generation cursor.

Window policy: the horizon slides with every run. A template's window starts the
day after its cursor (or at the anchor when nothing was generated yet) and ends at
today + lookahead_days. The cursor never moves backward, so a run with an earlier
"now" than a previous one generates nothing new.
"""

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from itertools import islice
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytz

from recurring_tasks.config import GenerationSettings, get_generation_settings
from recurring_tasks.exceptions import BatchError, CursorConflict, InvalidPattern, StorageError, TemplateNotFound
from recurring_tasks.models.recurrence_rule import RecurrencePattern
from recurring_tasks.models.recurring_template import RecurringTemplate
from recurring_tasks.services.instance_store import CursorState, InstanceStore
from recurring_tasks.services.occurrence_calculator import ONE_DAY, next_occurrence, occurrences_between
from recurring_tasks.services.recurrence_validator import RecurrenceValidator
from recurring_tasks.utils.dates import NowType, parse_now
from recurring_tasks.utils.logger import get_logger
from recurring_tasks.utils.metrics import MetricsCollector, metrics_collector

logger = get_logger("recurring_tasks.generation")


@dataclass
class TemplateResult:
    """Outcome of generating one template."""
    template_id: int
    instances_created: int = 0
    generated_until: Optional[date] = None
    active: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"template_id": self.template_id, "instances_created": self.instances_created}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class GenerationReport:
    """Per-template results of one generation run."""
    timestamp: datetime
    results: List[TemplateResult] = field(default_factory=list)
    timed_out: bool = False

    @property
    def templates_processed(self) -> int:
        return len(self.results)

    @property
    def total_instances_created(self) -> int:
        return sum(result.instances_created for result in self.results)

    @property
    def errors(self) -> List[TemplateResult]:
        return [result for result in self.results if result.error is not None]

    def created_counts(self) -> Dict[int, int]:
        """Mapping of template id to instances created."""
        return {result.template_id: result.instances_created for result in self.results}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "templatesProcessed": self.templates_processed,
            "totalInstancesCreated": self.total_instances_created,
            "results": [result.to_dict() for result in self.results],
            "timestamp": self.timestamp.isoformat(),
            "timedOut": self.timed_out,
        }


class GenerationDriver:
    """Generate recurring task instances through an InstanceStore."""

    def __init__(
        self,
        store: InstanceStore,
        lookahead_days: int = 90,
        timezone: str = "UTC",
        metrics: Optional[MetricsCollector] = None,
        batch_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the generation driver.

        Args:
            store: Storage for templates and instances
            lookahead_days: How many days past today instances are pre-created
            timezone: Zone used to turn "now" into a calendar date
            metrics: Metrics collector, the process-wide one by default
            batch_timeout_seconds: Stop starting new templates after this long
            clock: Monotonic clock used for the batch timeout
        """
        if lookahead_days < 0:
            raise ValueError(f"lookahead_days must not be negative, got {lookahead_days}")
        self.store = store
        self.lookahead_days = lookahead_days
        self.timezone = pytz.timezone(timezone)
        self.metrics = metrics or metrics_collector
        self.batch_timeout_seconds = batch_timeout_seconds
        self.clock = clock

    @classmethod
    def from_settings(cls, store: InstanceStore, settings: Optional[GenerationSettings] = None, **kwargs) -> "GenerationDriver":
        settings = settings or get_generation_settings()
        return cls(
            store,
            lookahead_days=settings.lookahead_days,
            timezone=settings.timezone,
            batch_timeout_seconds=settings.batch_timeout_seconds,
            **kwargs,
        )

    def local_date(self, now: NowType) -> date:
        """Calendar date of now in the configured timezone; naive datetimes are UTC."""
        now = parse_now(now)
        if isinstance(now, datetime):
            if now.tzinfo is None:
                now = pytz.utc.localize(now)
            return now.astimezone(self.timezone).date()
        return now

    def _timestamp(self, now: NowType) -> datetime:
        now = parse_now(now)
        if not isinstance(now, datetime):
            now = datetime(now.year, now.month, now.day)
        if now.tzinfo is None:
            now = pytz.utc.localize(now)
        return now

    def generate(self, now: NowType, lookahead_days: Optional[int] = None) -> GenerationReport:
        """
        Generate instances for every active template.

        Args:
            now: Current time (datetime, date or ISO string)
            lookahead_days: Horizon for this run, the driver's default when None

        Returns:
            GenerationReport with one result per processed template

        Raises:
            BatchError: If the active templates cannot be listed
        """
        horizon = self._horizon(lookahead_days)
        today = self.local_date(now)
        report = GenerationReport(timestamp=self._timestamp(now))
        self.metrics.generation_run()
        started = self.clock()

        with self.metrics.time_operation("generation_duration_seconds"):
            try:
                templates = self.store.list_active_templates()
            except Exception as e:
                self.metrics.generation_run_failed()
                logger.exception("Failed to list active templates", error=str(e))
                raise BatchError(f"Failed to list active templates: {e}", cause=e) from e

            logger.info(
                "Generation run started",
                templates=len(templates),
                today=today.isoformat(),
                lookahead_days=horizon,
            )

            for template in templates:
                if self._timed_out(started):
                    report.timed_out = True
                    logger.warning(
                        "Generation run timed out",
                        processed=report.templates_processed,
                        remaining=len(templates) - report.templates_processed,
                    )
                    break
                report.results.append(self._process_template(template, today, horizon))

        logger.info(
            "Generation run finished",
            templates_processed=report.templates_processed,
            instances_created=report.total_instances_created,
            errors=len(report.errors),
        )
        return report

    def generate_for_template(
        self,
        template_id: int,
        now: NowType,
        lookahead_days: Optional[int] = None,
    ) -> GenerationReport:
        """
        Generate instances for a single template on demand.

        Args:
            template_id: Template to generate
            now: Current time
            lookahead_days: Horizon for this run, the driver's default when None

        Raises:
            TemplateNotFound: If the template does not exist
        """
        horizon = self._horizon(lookahead_days)
        today = self.local_date(now)
        report = GenerationReport(timestamp=self._timestamp(now))

        template = self.store.get_template(template_id)
        if template is None:
            raise TemplateNotFound(template_id)

        if not template.active:
            logger.info("Skipping inactive template", template_id=template_id)
            report.results.append(
                TemplateResult(template_id=template_id, generated_until=template.generated_until, active=False)
            )
            return report

        report.results.append(self._process_template(template, today, horizon))
        return report

    def window_for(self, template: RecurringTemplate, today: date, lookahead_days: int) -> Tuple[date, date]:
        """Inclusive date window still to be generated for a template."""
        start = template.anchor_date
        if template.generated_until is not None:
            start = max(template.generated_until + ONE_DAY, template.anchor_date)
        return start, today + timedelta(days=lookahead_days)

    def plan_candidates(
        self,
        template: RecurringTemplate,
        pattern: RecurrencePattern,
        today: date,
        lookahead_days: int,
    ) -> List[date]:
        """Candidate dates for the template's window, truncated to its occurrence limit."""
        window_start, window_end = self.window_for(template, today, lookahead_days)
        candidates = occurrences_between(pattern, template.anchor_date, window_start, window_end)
        if pattern.max_occurrences is not None:
            remaining = max(0, pattern.max_occurrences - template.occurrences_generated)
            return list(islice(candidates, remaining))
        return list(candidates)

    def _process_template(self, template: RecurringTemplate, today: date, lookahead_days: int) -> TemplateResult:
        result = TemplateResult(
            template_id=template.id,
            generated_until=template.generated_until,
            active=template.active,
        )
        try:
            pattern = RecurrenceValidator.parse_pattern(template.pattern, template.anchor_date)
            candidates = self.plan_candidates(template, pattern, today, lookahead_days)

            generated_until = candidates[-1] if candidates else template.generated_until
            occurrences = template.occurrences_generated + len(candidates)
            window_end = today + timedelta(days=lookahead_days)
            active = not self._end_reached(pattern, template.anchor_date, occurrences, window_end)

            created = 0
            if candidates or not active:
                expected = CursorState(template.generated_until, template.occurrences_generated)
                fields = template.instance_fields()
                with self.store.transaction():
                    for instance_date in candidates:
                        if self.store.instance_exists(template.id, instance_date):
                            logger.debug(
                                "Instance already exists",
                                template_id=template.id,
                                instance_date=instance_date.isoformat(),
                            )
                            continue
                        self.store.create_instance(template.id, instance_date, fields)
                        created += 1
                    self.store.update_template_cursor(
                        template.id, generated_until, occurrences, active, expected=expected
                    )

            result.instances_created = created
            result.generated_until = generated_until
            result.active = active
            self.metrics.template_processed(created)

            logger.info(
                "Template generated",
                template_id=template.id,
                instances_created=created,
                generated_until=generated_until.isoformat() if generated_until else None,
            )
            if not active:
                logger.info("Template reached its end condition and was deactivated", template_id=template.id)

        except CursorConflict as e:
            result.error = e.message
            self.metrics.template_error()
            logger.warning("Concurrent generation detected", template_id=template.id, error=e.message)
        except (InvalidPattern, StorageError) as e:
            result.error = e.message
            self.metrics.template_error()
            logger.error("Template generation failed", template_id=template.id, error=e.message)
        except Exception as e:
            result.error = f"Unexpected error: {e}"
            self.metrics.template_error()
            logger.exception("Unexpected error generating template", template_id=template.id, error=str(e))

        return result

    def _end_reached(self, pattern: RecurrencePattern, anchor_date: date, occurrences: int, window_end: date) -> bool:
        if pattern.max_occurrences is not None and occurrences >= pattern.max_occurrences:
            return True
        # Every occurrence up to the end date has been materialised
        if pattern.end_date is not None and window_end >= pattern.end_date:
            return True
        # No candidate is left past the window, e.g. the next one would fall after date.max
        return next_occurrence(pattern, anchor_date, window_end) is None

    def _timed_out(self, started: float) -> bool:
        if self.batch_timeout_seconds is None:
            return False
        return self.clock() - started >= self.batch_timeout_seconds

    def _horizon(self, lookahead_days: Optional[int]) -> int:
        if lookahead_days is None:
            return self.lookahead_days
        if lookahead_days < 0:
            raise ValueError(f"lookahead_days must not be negative, got {lookahead_days}")
        return lookahead_days
