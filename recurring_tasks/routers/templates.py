"""Recurring template router: creation, edits and occurrence previews."""
from datetime import timedelta
from itertools import islice

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from recurring_tasks.db.config import get_session
from recurring_tasks.exceptions import InvalidPattern, TemplateNotFound
from recurring_tasks.models.recurring_template import RecurringTemplate
from recurring_tasks.schemas.recurrence import (
    PreviewRequest,
    PreviewResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
)
from recurring_tasks.services.occurrence_calculator import occurrences_between
from recurring_tasks.services.recurrence_validator import RecurrenceValidator
from recurring_tasks.services.template_service import TemplateService

router = APIRouter(tags=["Recurring Templates"])

MAX_PREVIEW_DAYS = 3660


def get_template_service(session: Session = Depends(get_session)) -> TemplateService:
    """Dependency for getting TemplateService instance."""
    return TemplateService(session)


def _to_response(template: RecurringTemplate) -> TemplateResponse:
    data = template.model_dump()
    data["next_occurrence"] = TemplateService.next_occurrence_for(template)
    return TemplateResponse(**data)


@router.post("/recurring-templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(
    template_data: TemplateCreate,
    service: TemplateService = Depends(get_template_service),
):
    """Create a recurring template after validating its pattern."""
    try:
        template = service.create_template(
            user_id=template_data.user_id,
            title=template_data.title,
            pattern=template_data.pattern,
            anchor_date=template_data.anchor_date,
            description=template_data.description,
            priority=template_data.priority,
            tags=template_data.tags,
            estimated_duration=template_data.estimated_duration,
        )
    except InvalidPattern as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=", ".join(e.errors))
    return _to_response(template)


@router.get("/recurring-templates/{template_id}", response_model=TemplateResponse)
def get_template(
    template_id: int,
    service: TemplateService = Depends(get_template_service),
):
    try:
        template = service.get_template(template_id)
    except TemplateNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return _to_response(template)


@router.patch("/recurring-templates/{template_id}", response_model=TemplateResponse)
def update_template(
    template_id: int,
    template_data: TemplateUpdate,
    service: TemplateService = Depends(get_template_service),
):
    """Edit a template; pattern edits only affect dates after its generation cursor."""
    try:
        template = service.update_template(template_id, **template_data.model_dump(exclude_unset=True))
    except TemplateNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except InvalidPattern as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=", ".join(e.errors))
    return _to_response(template)


@router.post("/recurrence/preview", response_model=PreviewResponse)
def preview_occurrences(request: PreviewRequest):
    """List the dates a pattern produces within a window, without storing anything."""
    if request.end < request.start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")
    if request.end - request.start > timedelta(days=MAX_PREVIEW_DAYS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Preview window cannot exceed {MAX_PREVIEW_DAYS} days",
        )

    try:
        pattern = RecurrenceValidator.parse_pattern(request.pattern, request.anchor_date)
    except InvalidPattern as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=", ".join(e.errors))

    if pattern.max_occurrences is None:
        dates = list(occurrences_between(pattern, request.anchor_date, request.start, request.end))
    else:
        # Count from the anchor so the occurrence limit is applied to the whole series
        series = occurrences_between(pattern, request.anchor_date, request.anchor_date, request.end)
        dates = [day for day in islice(series, pattern.max_occurrences) if day >= request.start]
    return PreviewResponse(dates=dates, count=len(dates))
