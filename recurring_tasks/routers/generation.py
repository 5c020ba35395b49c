"""Generation router: batch and on-demand instance generation."""
import logging
from datetime import datetime
from typing import Optional

import pytz
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from recurring_tasks.db.config import engine
from recurring_tasks.exceptions import TemplateNotFound
from recurring_tasks.schemas.recurrence import GenerateRequest
from recurring_tasks.services.generation_driver import GenerationDriver
from recurring_tasks.services.instance_store import InstanceStore, SQLModelInstanceStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Generation"])


def get_instance_store() -> InstanceStore:
    """Dependency for getting the instance store."""
    return SQLModelInstanceStore(engine)


def get_generation_driver(store: InstanceStore = Depends(get_instance_store)) -> GenerationDriver:
    """Dependency for getting a GenerationDriver configured from the environment."""
    return GenerationDriver.from_settings(store)


@router.post("/generate-recurring-tasks")
def generate_recurring_tasks(
    request: Optional[GenerateRequest] = None,
    driver: GenerationDriver = Depends(get_generation_driver),
):
    """Generate instances for all active templates, or for one template when template_id is given."""
    request = request or GenerateRequest()
    now = request.now or datetime.now(pytz.utc)

    try:
        if request.template_id is not None:
            report = driver.generate_for_template(request.template_id, now, request.lookahead_days)
        else:
            report = driver.generate(now, request.lookahead_days)
    except TemplateNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except Exception as e:
        logger.exception(f"Recurring task generation failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": str(e),
                "timestamp": datetime.now(pytz.utc).isoformat(),
            },
        )

    return report.to_dict()
