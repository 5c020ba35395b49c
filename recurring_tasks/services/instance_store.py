"""
Instance Store.

Storage contract used by the generation driver, and its SQLModel implementation.
"""

import abc
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from recurring_tasks.exceptions import CursorConflict, StorageError
from recurring_tasks.models.recurring_template import RecurringTemplate
from recurring_tasks.models.task_instance import TaskInstance

logger = logging.getLogger(__name__)


class CursorState(NamedTuple):
    """Generation cursor of a template as read before generating."""
    generated_until: Optional[date]
    occurrences_generated: int


class InstanceStore(abc.ABC):
    """Persistence of recurring templates and their task instances."""

    @abc.abstractmethod
    def list_active_templates(self) -> List[RecurringTemplate]:
        """Return detached snapshots of all active templates."""
        pass

    @abc.abstractmethod
    def get_template(self, template_id: int) -> Optional[RecurringTemplate]:
        """Return a detached snapshot of one template, or None."""
        pass

    @abc.abstractmethod
    def instance_exists(self, template_id: int, instance_date: date) -> bool:
        pass

    @abc.abstractmethod
    def create_instance(self, template_id: int, instance_date: date, task_fields: Dict[str, Any]) -> int:
        """Create an instance and return its id."""
        pass

    @abc.abstractmethod
    def update_template_cursor(
        self,
        template_id: int,
        generated_until: Optional[date],
        occurrences_generated: int,
        active: bool,
        expected: Optional[CursorState] = None,
    ) -> None:
        """
        Advance a template's cursor.

        Args:
            template_id: Template to update
            generated_until: New cursor date
            occurrences_generated: New running occurrence count
            active: Whether the template stays active
            expected: Cursor the caller read; when given the update only applies
                if the stored cursor still matches

        Raises:
            CursorConflict: If expected no longer matches the stored cursor
        """
        pass

    @abc.abstractmethod
    def transaction(self):
        """Context manager applying the writes made inside it atomically."""
        pass


class SQLModelInstanceStore(InstanceStore):
    """InstanceStore backed by the SQLModel tables."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session: Optional[Session] = None

    @contextmanager
    def transaction(self) -> Iterator["SQLModelInstanceStore"]:
        if self._session is not None:
            raise StorageError("Nested transactions are not supported")
        with Session(self.engine, expire_on_commit=False) as session:
            self._session = session
            try:
                yield self
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise StorageError(f"Instance store rejected write: {e.orig}") from e
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Instance store transaction failed: {e}") from e
            except Exception:
                session.rollback()
                raise
            finally:
                self._session = None

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Current transaction's session, or a short-lived one that commits on exit."""
        if self._session is not None:
            try:
                yield self._session
            except IntegrityError as e:
                raise StorageError(f"Instance store rejected write: {e.orig}") from e
            except SQLAlchemyError as e:
                raise StorageError(f"Instance store operation failed: {e}") from e
            return

        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
                session.commit()
        except IntegrityError as e:
            raise StorageError(f"Instance store rejected write: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Instance store operation failed: {e}") from e

    def list_active_templates(self) -> List[RecurringTemplate]:
        with self._session_scope() as session:
            statement = (
                select(RecurringTemplate)
                .where(RecurringTemplate.active == True)  # noqa: E712
                .order_by(RecurringTemplate.id)
            )
            templates = session.exec(statement).all()
            for template in templates:
                session.expunge(template)
            return list(templates)

    def get_template(self, template_id: int) -> Optional[RecurringTemplate]:
        with self._session_scope() as session:
            template = session.get(RecurringTemplate, template_id)
            if template is not None:
                session.expunge(template)
            return template

    def instance_exists(self, template_id: int, instance_date: date) -> bool:
        with self._session_scope() as session:
            statement = select(TaskInstance.id).where(
                TaskInstance.recurring_template_id == template_id,
                TaskInstance.instance_date == instance_date,
            )
            return session.exec(statement).first() is not None

    def create_instance(self, template_id: int, instance_date: date, task_fields: Dict[str, Any]) -> int:
        with self._session_scope() as session:
            instance = TaskInstance(
                recurring_template_id=template_id,
                instance_date=instance_date,
                auto_generated=True,
                created_at=datetime.utcnow(),
                **task_fields,
            )
            session.add(instance)
            session.flush()
            logger.debug(f"Created instance {instance.id} of template {template_id} for {instance_date}")
            return instance.id

    def update_template_cursor(
        self,
        template_id: int,
        generated_until: Optional[date],
        occurrences_generated: int,
        active: bool,
        expected: Optional[CursorState] = None,
    ) -> None:
        with self._session_scope() as session:
            statement = update(RecurringTemplate).where(RecurringTemplate.id == template_id)
            if expected is not None:
                if expected.generated_until is None:
                    statement = statement.where(RecurringTemplate.generated_until.is_(None))
                else:
                    statement = statement.where(RecurringTemplate.generated_until == expected.generated_until)
                statement = statement.where(
                    RecurringTemplate.occurrences_generated == expected.occurrences_generated
                )
            statement = statement.values(
                generated_until=generated_until,
                occurrences_generated=occurrences_generated,
                active=active,
                updated_at=datetime.utcnow(),
            )
            result = session.execute(statement.execution_options(synchronize_session=False))
            if result.rowcount == 0:
                if expected is not None:
                    raise CursorConflict(template_id)
                raise StorageError(f"Recurring template {template_id} not found")
