"""Error taxonomy and FastAPI handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from stripe_sync.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class AuthenticationError(AppError):
    """Bad or missing webhook signature. Terminal; the provider should not retry."""
    code = "authentication_failed"
    status_code = 400


class MalformedEventError(AppError):
    """Event body could not be decoded into an envelope. Terminal."""
    code = "malformed_event"
    status_code = 400


class UnknownResourceShapeError(AppError):
    """A merger could not extract the fields its resource kind requires.

    Aborts the merge for this delivery only; the event is not marked applied
    so a later redelivery can succeed.
    """
    code = "unknown_resource_shape"
    status_code = 500


class HandlerExecutionError(AppError):
    """A caller-supplied handler raised. Recorded, never escalated."""
    code = "handler_failed"
    status_code = 500

    def __init__(self, message: str, *, handler_name: str, event_id: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.handler_name = handler_name
        self.event_id = event_id
        self.cause = cause


class CallerConfigurationError(ValidationError):
    """Application code asked for an invalid combination of options."""
    code = "caller_configuration"


class TierValidationError(ValidationError):
    code = "invalid_tiers"


class AdminAuthError(AppError):
    code = "forbidden"
    status_code = 403


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def error_payload(code: str, message: str, request_id: Optional[str]) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("stripe_sync")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = error_payload(code, message, rid)
    logger = logging.getLogger("stripe_sync")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("stripe_sync")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
