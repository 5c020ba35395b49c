"""Exception types for recurring task generation."""
from typing import List, Optional


class RecurringTaskError(Exception):
    """Base exception for the recurring task service."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidPattern(RecurringTaskError):
    """Raised when a recurrence pattern violates one or more constraints."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid recurrence pattern: " + "; ".join(self.errors))


class StorageError(RecurringTaskError):
    """Raised when the instance store fails a read or write."""


class CursorConflict(StorageError):
    """Raised when a template cursor was advanced by a concurrent run."""

    def __init__(self, template_id: int):
        self.template_id = template_id
        super().__init__(f"Cursor of template {template_id} was moved by a concurrent generation run")


class TemplateNotFound(StorageError):
    """Raised when a recurring template does not exist."""

    def __init__(self, template_id: int):
        self.template_id = template_id
        super().__init__(f"Recurring template {template_id} not found")


class BatchError(RecurringTaskError):
    """Raised when a generation run fails as a whole."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
