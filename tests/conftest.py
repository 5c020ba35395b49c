import copy
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, select

from recurring_tasks.db.config import build_engine
from recurring_tasks.db.init import init_db
from recurring_tasks.exceptions import CursorConflict, StorageError
from recurring_tasks.models.recurring_template import RecurringTemplate
from recurring_tasks.models.task_instance import TaskInstance
from recurring_tasks.services.instance_store import CursorState, InstanceStore, SQLModelInstanceStore
from recurring_tasks.utils.metrics import MetricsCollector


class FakeInstanceStore(InstanceStore):
    """In-memory store with transactional buffering and hooks for failure and interleaving."""

    def __init__(self):
        self.templates: Dict[int, RecurringTemplate] = {}
        self.instances: Dict[Tuple[int, date], Dict[str, Any]] = {}
        self.fail_listing = False
        self.fail_create_for: set = set()
        self.on_list_active: Optional[Callable[[], None]] = None
        self._next_instance_id = 1
        self._pending_instances: Optional[List[Tuple[int, date, Dict[str, Any]]]] = None
        self._pending_cursors: Optional[List[Tuple[int, Dict[str, Any]]]] = None

    def add_template(self, **fields) -> RecurringTemplate:
        template_id = len(self.templates) + 1
        fields.setdefault("user_id", "user-1")
        fields.setdefault("title", f"Template {template_id}")
        template = RecurringTemplate(id=template_id, **fields)
        self.templates[template_id] = template
        return template

    def instance_dates(self, template_id: int) -> List[date]:
        return sorted(day for tid, day in self.instances if tid == template_id)

    def _snapshot(self, template: RecurringTemplate) -> RecurringTemplate:
        return RecurringTemplate(**copy.deepcopy(template.model_dump()))

    def list_active_templates(self) -> List[RecurringTemplate]:
        if self.fail_listing:
            raise StorageError("connection refused")
        snapshots = [self._snapshot(t) for t in self.templates.values() if t.active]
        if self.on_list_active is not None:
            self.on_list_active()
        return snapshots

    def get_template(self, template_id: int) -> Optional[RecurringTemplate]:
        template = self.templates.get(template_id)
        return self._snapshot(template) if template is not None else None

    def instance_exists(self, template_id: int, instance_date: date) -> bool:
        if (template_id, instance_date) in self.instances:
            return True
        pending = self._pending_instances or []
        return any(tid == template_id and day == instance_date for tid, day, _ in pending)

    def create_instance(self, template_id: int, instance_date: date, task_fields: Dict[str, Any]) -> int:
        if template_id in self.fail_create_for:
            raise StorageError(f"write rejected for template {template_id}")
        if self._pending_instances is not None:
            self._pending_instances.append((template_id, instance_date, task_fields))
        else:
            self._insert(template_id, instance_date, task_fields)
        return self._next_instance_id

    def _insert(self, template_id, instance_date, task_fields):
        key = (template_id, instance_date)
        if key in self.instances:
            raise StorageError(f"duplicate instance {key}")
        self.instances[key] = dict(task_fields, id=self._next_instance_id)
        self._next_instance_id += 1

    def update_template_cursor(self, template_id, generated_until, occurrences_generated, active,
                               expected: Optional[CursorState] = None) -> None:
        template = self.templates.get(template_id)
        if template is None:
            raise StorageError(f"Recurring template {template_id} not found")
        if expected is not None and (
            template.generated_until != expected.generated_until
            or template.occurrences_generated != expected.occurrences_generated
        ):
            raise CursorConflict(template_id)
        values = {
            "generated_until": generated_until,
            "occurrences_generated": occurrences_generated,
            "active": active,
        }
        if self._pending_cursors is not None:
            self._pending_cursors.append((template_id, values))
        else:
            self._apply_cursor(template_id, values)

    def _apply_cursor(self, template_id, values):
        for key, value in values.items():
            setattr(self.templates[template_id], key, value)

    @contextmanager
    def transaction(self):
        self._pending_instances = []
        self._pending_cursors = []
        try:
            yield self
            for template_id, instance_date, fields in self._pending_instances:
                self._insert(template_id, instance_date, fields)
            for template_id, values in self._pending_cursors:
                self._apply_cursor(template_id, values)
        finally:
            self._pending_instances = None
            self._pending_cursors = None


@pytest.fixture()
def engine():
    test_engine = build_engine("sqlite://", poolclass=StaticPool, echo=False)
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture()
def store(engine) -> SQLModelInstanceStore:
    return SQLModelInstanceStore(engine)


@pytest.fixture()
def fake_store() -> FakeInstanceStore:
    return FakeInstanceStore()


@pytest.fixture()
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture()
def make_template(engine):
    """Insert a template row directly, bypassing validation."""

    def _make(pattern: Dict[str, Any], anchor_date: date, **fields) -> int:
        fields.setdefault("user_id", "user-1")
        fields.setdefault("title", "Water the plants")
        with Session(engine) as db_session:
            template = RecurringTemplate(pattern=pattern, anchor_date=anchor_date, **fields)
            db_session.add(template)
            db_session.commit()
            db_session.refresh(template)
            return template.id

    return _make


@pytest.fixture()
def load_template(engine):
    def _load(template_id: int) -> RecurringTemplate:
        with Session(engine) as db_session:
            return db_session.get(RecurringTemplate, template_id)

    return _load


@pytest.fixture()
def instance_dates(engine):
    def _dates(template_id: int) -> List[date]:
        with Session(engine) as db_session:
            statement = (
                select(TaskInstance.instance_date)
                .where(TaskInstance.recurring_template_id == template_id)
                .order_by(TaskInstance.instance_date)
            )
            return list(db_session.exec(statement).all())

    return _dates
