"""
Workflow error taxonomy and its HTTP translation.

Every rejection carries a reason code. None of them is retried by the server;
the handlers below turn them into JSON bodies of the form
``{"detail": ..., "code": ...}``.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from madadkaro_shared.schemas.common import ErrorBody, RejectionCode

log = structlog.get_logger()


class WorkflowError(Exception):
    """Base class for rejected workflow operations."""

    code: RejectionCode
    status_code: int = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class Unauthorized(WorkflowError):
    """The actor is not the identity or role the action requires."""

    code = RejectionCode.UNAUTHORIZED
    status_code = 403


class InvalidState(WorkflowError):
    """The entity is not in a state from which the action is legal."""

    code = RejectionCode.INVALID_STATE
    status_code = 409


class ConflictingAccept(WorkflowError):
    """Another accept won the race for the same task."""

    code = RejectionCode.CONFLICTING_ACCEPT
    status_code = 409


class ValidationError(WorkflowError):
    """Malformed input such as a missing note or a non-positive amount."""

    code = RejectionCode.VALIDATION_ERROR
    status_code = 422


class NotFound(WorkflowError):
    code = RejectionCode.NOT_FOUND
    status_code = 404


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    log.info(
        "workflow.rejected",
        code=exc.code.value,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorBody(detail=exc.detail, code=exc.code).model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)
