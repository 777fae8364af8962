"""Domain exceptions.

Services raise these instead of ``HTTPException`` so they can be reused
from dramatiq actors; ``ledgerly.api.error_handlers`` maps them to JSON
responses.
"""

from __future__ import annotations

from typing import Any, Optional


class LedgerlyError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400
    error = "Request failed"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(LedgerlyError):
    status_code = 404
    error = "Not found"


class ValidationError(LedgerlyError):
    status_code = 422
    error = "Validation error"


class ParseError(LedgerlyError):
    error = "Statement parsing failed"


class MatchingError(LedgerlyError):
    error = "Invoice matching failed"


class CategorizationError(LedgerlyError):
    status_code = 502
    error = "Categorization failed"


class WorkflowError(LedgerlyError):
    status_code = 409
    error = "Workflow error"


class StepError(WorkflowError):
    error = "Workflow step error"


class StopWorkflow(Exception):
    """Raised by a step to end the run early without failing it."""
