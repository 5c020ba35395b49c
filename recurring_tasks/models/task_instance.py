"""Task instance model for SQLModel."""
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class TaskInstance(SQLModel, table=True):
    """One concrete, dated occurrence of a recurring template."""
    __tablename__ = "task_instance"
    __table_args__ = (
        UniqueConstraint("recurring_template_id", "instance_date", name="uq_task_instance_template_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    recurring_template_id: int = Field(foreign_key="recurring_template.id", index=True)
    instance_date: date

    # Fields copied from the template
    user_id: str = Field(max_length=100, index=True)
    title: str = Field(max_length=200, min_length=1)
    description: Optional[str] = Field(default=None, max_length=1000)
    priority: str = Field(default="medium", max_length=20)
    tags: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    estimated_duration: Optional[int] = Field(default=None)

    status: str = Field(default="todo", max_length=20)
    auto_generated: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
