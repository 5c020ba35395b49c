"""Main FastAPI application for the Recurring Task Service."""
import logging

from fastapi import FastAPI

from recurring_tasks.config import LOG_LEVEL
from recurring_tasks.db.init import init_db
from recurring_tasks.routers import generation_router, templates_router
from recurring_tasks.utils.metrics import metrics_collector

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Recurring Task Service",
    description="Generates dated task instances from recurring task templates",
    version="1.0.0",
)


@app.on_event("startup")
async def startup_event():
    """Initialize database tables on startup."""
    try:
        init_db()
    except Exception as e:
        logger.warning(f"Database initialization failed: {e}")
        logger.warning("Server will continue but database operations may fail.")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/metrics")
async def metrics():
    """Generation counters and timers."""
    return metrics_collector.get_metrics()


app.include_router(generation_router)
app.include_router(templates_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "recurring_tasks.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
