"""HTTP error envelope and exception handlers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .integrations.google.errors import IntegrationError
from .logging_config import req_id_var

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
    429: "rate_limited",
}


def json_error(
    code: str,
    message: str,
    status: int,
    *,
    retryable: bool = False,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Standard error body: {"code", "message", "retryable", "details"}."""
    body = {
        "code": code.lower(),
        "message": message,
        "retryable": retryable,
        "details": details or {},
        "request_id": req_id_var.get(),
    }
    return JSONResponse(body, status_code=status, headers={"X-Error-Code": code.lower(), **(headers or {})})


async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    payload = exc.as_response()
    return json_error(
        payload["code"],
        payload["message"],
        exc.http_status,
        retryable=payload["retryable"],
        details=payload["details"],
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else code.replace("_", " ")
    return json_error(code, message, exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return json_error(
        "validation_error", "Invalid input data", 422, details={"errors": jsonable_encoder(exc.errors())}
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", extra={"meta": {"path": request.url.path}})
    return json_error("internal_error", "Something went wrong", 500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IntegrationError, integration_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
