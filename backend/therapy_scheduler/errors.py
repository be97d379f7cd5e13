from __future__ import annotations

from typing import List, Optional


class SchedulingError(Exception):
    """Base class for every error the booking engine raises."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.problems: List[str] = list(problems or [])

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.problems:
            body["problems"] = self.problems
        return body


class ValidationError(SchedulingError):
    """Malformed or missing input, or a date/time already in the past."""

    status_code = 400
    error = "Bad request"


class FormatError(ValidationError, ValueError):
    """Text that is not a well-formed HH:MM time or YYYY-MM-DD date."""


class NotFoundError(SchedulingError):
    status_code = 404
    error = "Not found"


class ConflictError(SchedulingError):
    """The requested window overlaps an active booking of the same therapist."""

    status_code = 409
    error = "Conflict"


class NotificationError(SchedulingError):
    """Confirmation could not be delivered; the booking was rolled back."""

    status_code = 503
    error = "Notification failed"


class InternalError(SchedulingError):
    status_code = 500
