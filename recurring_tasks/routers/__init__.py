"""Routers package for the recurring task service."""

from .generation import router as generation_router
from .templates import router as templates_router

__all__ = ["generation_router", "templates_router"]
