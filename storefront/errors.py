"""Error taxonomy and the handlers that turn it into JSON responses.

Every error body is ``{"error": "<message>"}`` plus optional ``details``.
Unexpected exceptions are logged with their traceback and reported to the
client as a generic 500.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class APIError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationFailed(APIError):
    status_code = status.HTTP_400_BAD_REQUEST

    @classmethod
    def field(cls, field: str, message: str) -> "ValidationFailed":
        return cls("Validation failed", details=[{"field": field, "message": message}])


class NotFound(APIError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(APIError):
    status_code = status.HTTP_409_CONFLICT


class UpstreamError(APIError):
    """The payment gateway (or another dependency) failed or was unreachable."""

    status_code = status.HTTP_502_BAD_GATEWAY


def error_response(status_code: int, message: str, details: list[dict[str, Any]] | None = None) -> JSONResponse:
    body: dict[str, Any] = {"error": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _field_name(loc: tuple) -> str:
    # ("body", "items", 0, "quantity") -> "items.0.quantity"
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "body"


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    return error_response(exc.status_code, exc.message, exc.details)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"field": _field_name(tuple(e.get("loc", ()))), "message": e.get("msg", "")} for e in exc.errors()]
    logger.info("%s %s rejected: %s", request.method, request.url.path, details)
    return error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
