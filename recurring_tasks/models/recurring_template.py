"""Recurring template model for SQLModel."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class RecurringTemplate(SQLModel, table=True):
    """Recurring task template: the source of truth for a recurring series."""
    __tablename__ = "recurring_template"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(max_length=100, index=True)
    title: str = Field(max_length=200, min_length=1)
    description: Optional[str] = Field(default=None, max_length=1000)
    priority: str = Field(default="medium", max_length=20)  # high, medium, low
    tags: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    estimated_duration: Optional[int] = Field(default=None)  # minutes

    pattern: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    anchor_date: date

    # Generation cursor, written only by the generation driver
    generated_until: Optional[date] = Field(default=None)
    occurrences_generated: int = Field(default=0)
    active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def instance_fields(self) -> Dict[str, Any]:
        """Task fields copied onto every generated instance."""
        return {
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "tags": list(self.tags) if self.tags else [],
            "estimated_duration": self.estimated_duration,
        }
