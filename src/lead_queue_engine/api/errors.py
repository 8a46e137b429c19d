"""Map domain errors to JSON error responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    AgentNotFound,
    AlreadyReserved,
    AlreadyResolved,
    InvalidTransition,
    LeadNotFound,
    LeadQueueError,
    StorageFault,
)

logger = logging.getLogger(__name__)


def _status_for(exc: LeadQueueError) -> int:
    if isinstance(exc, (LeadNotFound, AgentNotFound)):
        return 404
    if isinstance(exc, (AlreadyReserved, AlreadyResolved, InvalidTransition)):
        return 409
    if isinstance(exc, StorageFault):
        return 503
    return 500


def error_body(error: str, detail: str) -> dict:
    return {"success": False, "error": error, "detail": detail}


async def queue_error_handler(request: Request, exc: LeadQueueError) -> JSONResponse:
    status = _status_for(exc)
    if status == 409:
        # Losing a race is an expected outcome
        logger.info(f"{request.method} {request.url.path}: {exc}")
    elif status >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc}")

    response = JSONResponse(status_code=status, content=error_body(exc.code, str(exc)))
    if isinstance(exc, StorageFault):
        response.headers["Retry-After"] = "1"
    return response


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_body("validation_error", str(exc)))


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(LeadQueueError, queue_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
