"""Request and response schemas for recurring templates and generation."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from recurring_tasks.utils.dates import parse_now


class RecurrencePatternInput(BaseModel):
    """Raw recurrence pattern as submitted by a client; accepts snake_case or camelCase keys."""
    model_config = ConfigDict(extra="ignore")

    frequency: str
    interval: int = 1
    days_of_week: Optional[List[int]] = Field(
        default=None, validation_alias=AliasChoices("days_of_week", "daysOfWeek")
    )
    day_of_month: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("day_of_month", "dayOfMonth")
    )
    end_date: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("end_date", "endDate")
    )
    max_occurrences: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("max_occurrences", "maxOccurrences")
    )
    skip_weekends: bool = Field(
        default=False, validation_alias=AliasChoices("skip_weekends", "skipWeekends")
    )


class TemplateCreate(BaseModel):
    """Schema for creating a recurring template."""
    user_id: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    priority: str = Field(default="medium", pattern=r"^(high|medium|low)$")
    tags: Optional[List[str]] = Field(None, max_length=10)
    estimated_duration: Optional[int] = Field(None, ge=1)
    pattern: Dict[str, Any]
    anchor_date: date


class TemplateUpdate(BaseModel):
    """Schema for editing a recurring template; omitted fields are left unchanged."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    priority: Optional[str] = Field(None, pattern=r"^(high|medium|low)$")
    tags: Optional[List[str]] = Field(None, max_length=10)
    estimated_duration: Optional[int] = Field(None, ge=1)
    pattern: Optional[Dict[str, Any]] = None
    anchor_date: Optional[date] = None
    active: Optional[bool] = None


class TemplateResponse(BaseModel):
    """Schema for recurring template API responses."""
    id: int
    user_id: str
    title: str
    description: Optional[str] = None
    priority: str = "medium"
    tags: Optional[List[str]] = []
    estimated_duration: Optional[int] = None
    pattern: Dict[str, Any]
    anchor_date: date
    generated_until: Optional[date] = None
    occurrences_generated: int = 0
    active: bool = True
    next_occurrence: Optional[date] = None  # first occurrence after the cursor
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class GenerateRequest(BaseModel):
    """Optional body of the generation endpoint."""
    now: Optional[str] = None  # ISO date or datetime, defaults to the current time
    template_id: Optional[int] = None  # restrict the run to one template
    lookahead_days: Optional[int] = Field(None, ge=0, le=3650)

    @field_validator("now")
    @classmethod
    def check_now(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            # Kept as text so a bare date stays a calendar date in the driver
            parse_now(value)
        return value


class PreviewRequest(BaseModel):
    """Schema for previewing the occurrences of a pattern."""
    pattern: Dict[str, Any]
    anchor_date: date
    start: date
    end: date


class PreviewResponse(BaseModel):
    dates: List[date]
    count: int
