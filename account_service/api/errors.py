"""Single boundary translator: every failure becomes the error envelope with a stable status and code."""

import logging
import traceback
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from account_service.core.errors import AuthenticationFailed, ServiceError, ValidationFailed
from account_service.schemas.common import error_body

if TYPE_CHECKING:
    from account_service.core.config import Settings

logger = logging.getLogger(__name__)

HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_FAILED",
    403: "ACCESS_DENIED",
    404: "ENDPOINT_NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "FILE_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
}

# Location prefixes FastAPI puts in front of the field name.
_LOCATION_PARTS = frozenset({"body", "query", "path", "header", "cookie", "form"})


def _field_name(loc: tuple) -> str:
    parts = [str(p) for p in loc if str(p) not in _LOCATION_PARTS]
    return ".".join(parts) or "general"


def group_request_errors(errors: list[dict]) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for err in errors:
        grouped.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value")
        )
    return grouped


def register_exception_handlers(app: FastAPI, settings: "Settings") -> None:
    """Attach handlers; stack traces are echoed only when APP_ENV=dev."""

    def stack_trace(exc: BaseException) -> str | None:
        if not settings.is_development:
            return None
        return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
        logger.warning(
            "%s %s -> %s %s: %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.code,
            exc.message,
        )
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationFailed) else None
        field_errors = exc.field_errors if isinstance(exc, ValidationFailed) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.code, field_errors, stack_trace(exc)),
            headers=headers,
        )

    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        field_errors = group_request_errors(list(exc.errors()))
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, field_errors)
        return JSONResponse(
            status_code=400,
            content=error_body("Validation failed", "VALIDATION_ERROR", field_errors, stack_trace(exc)),
        )

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, code)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(message, code),
            headers=getattr(exc, "headers", None),
        )

    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error on %s %s", request.method, request.url.path)
        message = str(exc) if settings.is_development else "An unexpected error occurred"
        return JSONResponse(
            status_code=500,
            content=error_body(message, "INTERNAL_SERVER_ERROR", stack_trace=stack_trace(exc)),
        )

    app.add_exception_handler(ServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unexpected)
