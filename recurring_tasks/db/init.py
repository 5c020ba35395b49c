"""Initialize database tables."""
import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

# Imported so their tables are registered on the metadata
from recurring_tasks.models.recurring_template import RecurringTemplate  # noqa: F401
from recurring_tasks.models.task_instance import TaskInstance  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(target: Optional[Engine] = None):
    """Create all tables in the database."""
    if target is None:
        from recurring_tasks.db.config import engine as target
    logger.info("Creating recurring task tables...")
    SQLModel.metadata.create_all(target)
    logger.info("Tables created successfully.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
