"""
Workflow error taxonomy.

Every service raises one of these; the HTTP layer maps them to status codes
through a single exception handler registered in ``main.create_app``.
"""
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


logger = structlog.get_logger(__name__)


class WorkflowError(Exception):
    status_code = 400
    code = "workflow_error"

    def __init__(self, message: str, *, context: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(WorkflowError):
    status_code = 400
    code = "validation_error"


class AuthorizationError(WorkflowError):
    status_code = 403
    code = "forbidden"


class NotFoundError(WorkflowError):
    status_code = 404
    code = "not_found"


class ConflictError(WorkflowError):
    status_code = 409
    code = "conflict"


class InvalidTransitionError(WorkflowError):
    status_code = 409
    code = "invalid_transition"


class InvariantViolationError(WorkflowError):
    """Recomputed totals disagree with stored or submitted values."""
    status_code = 500
    code = "invariant_violation"


def setup_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError):
        log = logger.error if isinstance(exc, InvariantViolationError) else logger.warning
        log(
            "workflow_error",
            code=exc.code,
            error=exc.message,
            path=request.url.path,
            **exc.context,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )
