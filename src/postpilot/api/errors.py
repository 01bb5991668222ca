"""Exception handlers — one JSON error shape for every failure.

Learn: Services raise typed errors (postpilot.errors); this module is the
only place they become HTTP responses. The body is always

    {"statusCode": 401, "message": "Not authorized", "code": "UNAUTHORIZED",
     "success": false}

Authentication failures all share the same public message. The precise
reason (expired, forged, reused...) is logged here and nowhere else.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from postpilot.errors import (
    ConflictError,
    SessionCoreError,
    StoreUnavailableError,
    UnauthorizedError,
)

logger = structlog.get_logger()


def error_body(status_code: int, message: str, code: str, **extra) -> dict:
    body = {"statusCode": status_code, "message": message, "code": code, "success": False}
    body.update(extra)
    return body


async def handle_session_error(request: Request, exc: SessionCoreError) -> JSONResponse:
    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}

    if isinstance(exc, UnauthorizedError):
        logger.info(
            "auth.rejected",
            path=request.url.path,
            reason=exc.reason.value,
        )
    elif isinstance(exc, ConflictError):
        logger.info("auth.conflict", path=request.url.path, kind=exc.kind.value)
    elif isinstance(exc, StoreUnavailableError):
        logger.error("store.unavailable", path=request.url.path, error=exc.detail)
    else:
        logger.info("request.failed", path=request.url.path, code=exc.code)

    extra = {"retryable": True} if exc.retryable else {}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.public_message, exc.code, **extra),
        headers=headers,
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body(400, "Invalid input", "BAD_INPUT", errors=errors),
    )


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, str(exc.detail), "HTTP_ERROR"),
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SessionCoreError, handle_session_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
