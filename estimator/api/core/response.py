"""JSON envelopes and exception handlers.

Buffered endpoints always answer with one JSON object; failures use the
``{error, message, code?, details?}`` envelope.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.exceptions import EstimatorError

logger = logging.getLogger(__name__)

_STATUS_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    422: "Bad Request",
    429: "Too Many Requests",
}


def success_response(data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=data if data is not None else {"success": True})


def error_response(
    error: str,
    message: Optional[str] = None,
    status_code: int = 500,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    body = {"error": error, "message": message or error}
    if code:
        body["code"] = code
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


async def _estimator_error_handler(request: Request, exc: EstimatorError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    title = _STATUS_TITLES.get(exc.status_code, "Error")
    if exc.status_code == 404 and exc.detail == "Not Found":
        return error_response(title, f"Route {request.method} {request.url.path} not found", 404)
    return error_response(title, str(exc.detail), exc.status_code)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        "Bad Request", "Invalid request body", 400, code="VALIDATION",
        details=jsonable_encoder(exc.errors()),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response("Something went wrong!", str(exc), 500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EstimatorError, _estimator_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
