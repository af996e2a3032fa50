"""Render auth failures as {statusCode, errorType, message, timestamp, path}."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sessionguard.core.errors import AuthError

logger = logging.getLogger(__name__)


def error_response(request: Request, status: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "statusCode": status,
            "errorType": error_type,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    )


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    logger.warning(
        "Status: %s | Type: %s | Path: %s %s | Message: %s",
        exc.status_code,
        exc.code,
        request.method,
        request.url.path,
        exc.message,
    )
    return error_response(request, exc.status_code, exc.code, exc.message)


async def timeout_handler(request: Request, exc: TimeoutError) -> JSONResponse:
    logger.error("Request timed out: %s %s", request.method, request.url.path)
    return error_response(request, 503, "SERVICE_UNAVAILABLE", "Request timed out, try again")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(TimeoutError, timeout_handler)
