"""
Custom exception handlers for FastAPI.
Maps pipeline errors to JSON responses and provides clear messages for
validation and server errors.
"""

from fastapi import Request
from fastapi.exception_handlers import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_500_INTERNAL_SERVER_ERROR

from receipt_intake.core.errors import (
    AdmissionRejected,
    InvalidTransition,
    LedgerEntryNotFound,
    QueueFull,
    RateLimited,
)
from receipt_intake.core.observability import sentry_capture


def admission_exception_handler(request: Request, exc: AdmissionRejected):
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc) or exc.reason},
        headers=headers,
    )


def queue_full_exception_handler(request: Request, exc: QueueFull):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc) or "Ingestion queue is full"},
        headers={"Retry-After": "30"},
    )


def ledger_exception_handler(request: Request, exc: LedgerEntryNotFound | InvalidTransition):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "details": exc.errors(),
        },
    )


def generic_exception_handler(request: Request, exc: Exception):
    sentry_capture(exc)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "details": str(exc),
        },
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(AdmissionRejected, admission_exception_handler)
    app.add_exception_handler(QueueFull, queue_full_exception_handler)
    app.add_exception_handler(LedgerEntryNotFound, ledger_exception_handler)
    app.add_exception_handler(InvalidTransition, ledger_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
