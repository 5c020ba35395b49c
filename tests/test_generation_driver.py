from datetime import date, datetime, timedelta

import pytest
import pytz
from sqlmodel import Session

from recurring_tasks.config import GenerationSettings
from recurring_tasks.exceptions import BatchError, TemplateNotFound
from recurring_tasks.services.generation_driver import GenerationDriver
from recurring_tasks.services.template_service import TemplateService

DAILY = {"frequency": "daily", "interval": 1}


def days(start: date, count: int):
    return [start + timedelta(days=offset) for offset in range(count)]


def test_first_run_covers_anchor_through_horizon(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=5, metrics=metrics)

    report = driver.generate("2024-01-03")

    assert report.created_counts() == {template_id: 8}
    assert instance_dates(template_id) == days(date(2024, 1, 1), 8)
    template = load_template(template_id)
    assert template.generated_until == date(2024, 1, 8)
    assert template.occurrences_generated == 8
    assert template.active is True


def test_sliding_horizon_adds_one_day_per_day(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=5, metrics=metrics)
    driver.generate("2024-01-03")

    report = driver.generate("2024-01-04")

    assert report.created_counts() == {template_id: 1}
    assert instance_dates(template_id)[-1] == date(2024, 1, 9)
    assert load_template(template_id).generated_until == date(2024, 1, 9)


def test_repeated_generation_is_idempotent(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template({"frequency": "weekly", "daysOfWeek": [1, 4]}, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=30, metrics=metrics)
    driver.generate("2024-01-01")
    first_cursor = load_template(template_id).generated_until
    first_dates = instance_dates(template_id)

    report = driver.generate("2024-01-01")

    assert report.total_instances_created == 0
    assert load_template(template_id).generated_until == first_cursor
    assert instance_dates(template_id) == first_dates


def test_earlier_now_does_not_reopen_covered_window(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=2, metrics=metrics)
    driver.generate("2024-01-10")

    report = driver.generate("2024-01-03")

    assert report.total_instances_created == 0
    assert load_template(template_id).generated_until == date(2024, 1, 12)
    assert len(instance_dates(template_id)) == 12


def test_existing_instances_are_not_duplicated(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1))
    store.create_instance(template_id, date(2024, 1, 2), {"user_id": "user-1", "title": "Water the plants"})
    driver = GenerationDriver(store, lookahead_days=5, metrics=metrics)

    report = driver.generate("2024-01-03")

    assert report.created_counts() == {template_id: 7}
    assert instance_dates(template_id) == days(date(2024, 1, 1), 8)
    assert load_template(template_id).occurrences_generated == 8


def test_max_occurrences_across_runs_deactivates(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template({"frequency": "daily", "maxOccurrences": 3}, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=1, metrics=metrics)

    assert driver.generate("2024-01-01").created_counts() == {template_id: 2}
    assert load_template(template_id).active is True

    assert driver.generate("2024-01-02").created_counts() == {template_id: 1}
    assert load_template(template_id).active is False

    report = driver.generate("2024-01-20")

    assert report.templates_processed == 0
    assert instance_dates(template_id) == days(date(2024, 1, 1), 3)
    assert load_template(template_id).occurrences_generated == 3


def test_max_occurrences_reached_mid_window(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template(
        {"frequency": "weekly", "daysOfWeek": [1, 3, 5], "maxOccurrences": 4}, date(2024, 1, 1)
    )
    driver = GenerationDriver(store, lookahead_days=60, metrics=metrics)

    report = driver.generate("2024-01-01")

    assert report.created_counts() == {template_id: 4}
    assert instance_dates(template_id) == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 5), date(2024, 1, 8)]
    template = load_template(template_id)
    assert template.generated_until == date(2024, 1, 8)
    assert template.active is False


def test_end_date_stops_generation_and_deactivates(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template({"frequency": "daily", "endDate": "2024-01-05"}, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=10, metrics=metrics)

    report = driver.generate("2024-01-01")

    assert report.created_counts() == {template_id: 5}
    assert instance_dates(template_id)[-1] == date(2024, 1, 5)
    assert load_template(template_id).active is False


def test_end_date_beyond_horizon_keeps_template_active(store, metrics, make_template, load_template):
    template_id = make_template({"frequency": "daily", "endDate": "2024-03-01"}, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=10, metrics=metrics)

    driver.generate("2024-01-01")

    assert load_template(template_id).active is True


def test_interval_edit_only_affects_dates_after_cursor(
    engine, store, metrics, make_template, load_template, instance_dates
):
    template_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=5, metrics=metrics)
    driver.generate("2024-01-03")

    with Session(engine) as session:
        TemplateService(session).update_template(template_id, pattern={"frequency": "daily", "interval": 3})

    report = driver.generate("2024-01-10")

    assert report.created_counts() == {template_id: 2}
    assert instance_dates(template_id) == days(date(2024, 1, 1), 8) + [date(2024, 1, 10), date(2024, 1, 13)]
    assert load_template(template_id).occurrences_generated == 10


def test_monthly_clamp_end_to_end(store, metrics, make_template, instance_dates):
    template_id = make_template({"frequency": "monthly", "interval": 1, "dayOfMonth": 31}, date(2024, 1, 31))
    driver = GenerationDriver(store, lookahead_days=0, metrics=metrics)

    driver.generate("2024-04-30")

    assert instance_dates(template_id) == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_instances_copy_template_fields(engine, store, metrics, make_template):
    from sqlmodel import select

    from recurring_tasks.models.task_instance import TaskInstance

    template_id = make_template(
        DAILY,
        date(2024, 1, 1),
        title="Stretch",
        description="Ten minutes",
        priority="high",
        tags=["health"],
        estimated_duration=10,
    )
    GenerationDriver(store, lookahead_days=0, metrics=metrics).generate("2024-01-01")

    with Session(engine) as session:
        instance = session.exec(select(TaskInstance)).one()

    assert instance.recurring_template_id == template_id
    assert instance.instance_date == date(2024, 1, 1)
    assert (instance.title, instance.description, instance.priority) == ("Stretch", "Ten minutes", "high")
    assert instance.tags == ["health"]
    assert instance.estimated_duration == 10
    assert instance.auto_generated is True
    assert instance.status == "todo"


def test_malformed_pattern_is_reported_and_batch_continues(store, metrics, make_template, instance_dates):
    bad_id = make_template({"frequency": "daily", "interval": 0}, date(2024, 1, 1))
    good_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=0, metrics=metrics)

    report = driver.generate("2024-01-02")

    assert report.templates_processed == 2
    bad, good = report.results
    assert bad.template_id == bad_id
    assert "Interval must be at least 1" in bad.error
    assert bad.instances_created == 0
    assert good.instances_created == 2
    assert instance_dates(good_id) == [date(2024, 1, 1), date(2024, 1, 2)]
    assert metrics.get_metrics()["counters"]["template_errors_total"] == 1


def test_inactive_templates_are_skipped(store, metrics, make_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1), active=False)

    report = GenerationDriver(store, lookahead_days=3, metrics=metrics).generate("2024-01-01")

    assert report.templates_processed == 0
    assert instance_dates(template_id) == []


def test_now_is_converted_in_configured_timezone(store, metrics, make_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=0, timezone="Pacific/Auckland", metrics=metrics)

    driver.generate(datetime(2024, 1, 1, 12, 0, tzinfo=pytz.utc))

    assert instance_dates(template_id) == [date(2024, 1, 1), date(2024, 1, 2)]


def test_local_date_accepts_dates_and_naive_datetimes(store, metrics):
    driver = GenerationDriver(store, timezone="America/New_York", metrics=metrics)

    assert driver.local_date(date(2024, 5, 1)) == date(2024, 5, 1)
    assert driver.local_date(datetime(2024, 5, 1, 2, 0)) == date(2024, 4, 30)
    assert driver.local_date("2024-05-01T02:00:00Z") == date(2024, 4, 30)


def test_generate_for_template_with_custom_lookahead(store, metrics, make_template, instance_dates):
    first_id = make_template(DAILY, date(2024, 1, 1))
    second_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=90, metrics=metrics)

    report = driver.generate_for_template(first_id, "2024-01-01", lookahead_days=2)

    assert report.created_counts() == {first_id: 3}
    assert instance_dates(second_id) == []


def test_generate_for_missing_template_raises(store, metrics):
    driver = GenerationDriver(store, metrics=metrics)

    with pytest.raises(TemplateNotFound):
        driver.generate_for_template(999, "2024-01-01")


def test_generate_for_inactive_template_creates_nothing(store, metrics, make_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1), active=False)

    report = GenerationDriver(store, metrics=metrics).generate_for_template(template_id, "2024-01-01")

    assert report.results[0].instances_created == 0
    assert report.results[0].active is False
    assert instance_dates(template_id) == []


def test_negative_lookahead_is_rejected(store, metrics):
    with pytest.raises(ValueError):
        GenerationDriver(store, lookahead_days=-1, metrics=metrics)


def test_from_settings(store, metrics):
    settings = GenerationSettings(lookahead_days=14, timezone="Europe/Paris", batch_timeout_seconds=30.0)

    driver = GenerationDriver.from_settings(store, settings, metrics=metrics)

    assert driver.lookahead_days == 14
    assert driver.timezone.zone == "Europe/Paris"
    assert driver.batch_timeout_seconds == 30.0


def test_report_to_dict(store, metrics, make_template):
    bad_id = make_template({"frequency": "fortnightly"}, date(2024, 1, 1))
    good_id = make_template(DAILY, date(2024, 1, 1))

    data = GenerationDriver(store, lookahead_days=1, metrics=metrics).generate("2024-01-01T08:30:00+00:00").to_dict()

    assert data["success"] is True
    assert data["templatesProcessed"] == 2
    assert data["totalInstancesCreated"] == 2
    assert data["timestamp"] == "2024-01-01T08:30:00+00:00"
    assert data["timedOut"] is False
    assert data["results"][0]["template_id"] == bad_id
    assert data["results"][0]["instances_created"] == 0
    assert "Frequency must be one of" in data["results"][0]["error"]
    assert data["results"][1] == {"template_id": good_id, "instances_created": 2}


def test_metrics_are_recorded(store, metrics, make_template):
    make_template(DAILY, date(2024, 1, 1))
    make_template(DAILY, date(2024, 1, 1))

    GenerationDriver(store, lookahead_days=2, metrics=metrics).generate("2024-01-01")

    counters = metrics.get_metrics()["counters"]
    assert counters["generation_runs_total"] == 1
    assert counters["templates_processed_total"] == 2
    assert counters["instances_created_total"] == 6
    assert "generation_duration_seconds" in metrics.get_metrics()["timers"]


# In-memory store scenarios


def test_listing_failure_raises_batch_error(fake_store, metrics):
    fake_store.fail_listing = True
    driver = GenerationDriver(fake_store, metrics=metrics)

    with pytest.raises(BatchError) as excinfo:
        driver.generate("2024-01-01")

    assert "connection refused" in excinfo.value.message
    assert metrics.get_metrics()["counters"]["generation_run_failures_total"] == 1


def test_storage_failure_is_isolated_and_rolled_back(fake_store, metrics):
    failing = fake_store.add_template(pattern=DAILY, anchor_date=date(2024, 1, 1))
    healthy = fake_store.add_template(pattern=DAILY, anchor_date=date(2024, 1, 1))
    fake_store.fail_create_for.add(failing.id)
    driver = GenerationDriver(fake_store, lookahead_days=3, metrics=metrics)

    report = driver.generate("2024-01-01")

    assert report.results[0].error == f"write rejected for template {failing.id}"
    assert report.results[1].instances_created == 4
    assert fake_store.instance_dates(failing.id) == []
    assert fake_store.templates[failing.id].generated_until is None
    assert fake_store.templates[failing.id].occurrences_generated == 0


def test_concurrent_runs_do_not_duplicate_instances(fake_store):
    template = fake_store.add_template(pattern=DAILY, anchor_date=date(2024, 1, 1))
    first = GenerationDriver(fake_store, lookahead_days=5)
    second = GenerationDriver(fake_store, lookahead_days=5)

    def run_second_in_between():
        fake_store.on_list_active = None
        second.generate("2024-01-03")

    fake_store.on_list_active = run_second_in_between
    report = first.generate("2024-01-03")

    assert report.total_instances_created == 0
    assert "concurrent" in report.results[0].error
    assert fake_store.instance_dates(template.id) == days(date(2024, 1, 1), 8)
    assert fake_store.templates[template.id].generated_until == date(2024, 1, 8)
    assert fake_store.templates[template.id].occurrences_generated == 8

    # The next run finds nothing left to do
    assert first.generate("2024-01-03").total_instances_created == 0


def test_batch_timeout_stops_before_next_template(fake_store, metrics):
    for _ in range(3):
        fake_store.add_template(pattern=DAILY, anchor_date=date(2024, 1, 1))
    ticks = iter([0.0, 0.0, 5.0, 5.0])
    driver = GenerationDriver(
        fake_store, lookahead_days=0, metrics=metrics, batch_timeout_seconds=1.0, clock=lambda: next(ticks)
    )

    report = driver.generate("2024-01-01")

    assert report.timed_out is True
    assert report.templates_processed == 1
    assert report.to_dict()["timedOut"] is True
    assert fake_store.instance_dates(1) == [date(2024, 1, 1)]
    assert fake_store.instance_dates(2) == []


def test_date_only_now_is_a_calendar_date_in_any_timezone(store, metrics, make_template, instance_dates):
    template_id = make_template(DAILY, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=0, timezone="America/New_York", metrics=metrics)

    assert driver.local_date("2024-01-03") == date(2024, 1, 3)
    driver.generate("2024-01-03")

    assert instance_dates(template_id) == days(date(2024, 1, 1), 3)


def test_series_running_past_date_max_is_deactivated(store, metrics, make_template, load_template, instance_dates):
    template_id = make_template({"frequency": "daily", "interval": 10**7}, date(2024, 1, 1))
    driver = GenerationDriver(store, lookahead_days=5, metrics=metrics)

    report = driver.generate("2024-01-03")

    assert report.errors == []
    assert instance_dates(template_id) == [date(2024, 1, 1)]
    template = load_template(template_id)
    assert template.generated_until == date(2024, 1, 1)
    assert template.active is False


def test_editing_a_paused_template_keeps_it_paused(engine, make_template, load_template):
    template_id = make_template(DAILY, date(2024, 1, 1))

    with Session(engine) as session:
        service = TemplateService(session)
        service.update_template(template_id, active=False)
        service.update_template(template_id, pattern={"frequency": "daily", "interval": 2})

    assert load_template(template_id).active is False


def test_editing_a_finished_template_reactivates_it(engine, store, metrics, make_template, load_template):
    template_id = make_template({"frequency": "daily", "maxOccurrences": 3}, date(2024, 1, 1))
    GenerationDriver(store, lookahead_days=5, metrics=metrics).generate("2024-01-03")
    assert load_template(template_id).active is False

    with Session(engine) as session:
        TemplateService(session).update_template(template_id, pattern={"frequency": "daily", "maxOccurrences": 10})

    template = load_template(template_id)
    assert template.active is True
    assert TemplateService.next_occurrence_for(template) == date(2024, 1, 4)
