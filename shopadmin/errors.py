"""
errors.py — Error envelope and exception handlers
=================================================
Every error leaves the API as ``{"success": false, "message": ...}``.
Validation failures add field-level ``errors``; unexpected failures add
the exception text only in development.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings

log = logging.getLogger(__name__)


class InfrastructureError(Exception):
    """A backing service (database) failed while serving a request."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
        self.message = message


class LoginRateLimited(HTTPException):
    def __init__(self, minutes: int, headers: dict) -> None:
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many login attempts. Please try again in {minutes} minutes.",
            headers=headers,
        )


def _envelope(message: str, **extra) -> dict:
    return {"success": False, "message": message, **extra}


def _rate_limit_headers(request: Request) -> dict:
    """Headers left on the request by the login throttle, if it ran."""
    return dict(getattr(request.state, "rate_limit_headers", None) or {})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        errors.append({
            "field": ".".join(loc),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        })
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_envelope("Validation failed", errors=errors),
        headers=_rate_limit_headers(request),
    )


async def infrastructure_error_handler(request: Request, exc: InfrastructureError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(exc.message),
        headers=_rate_limit_headers(request),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    extra = {"error": str(exc)} if settings.is_development else {}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope("Internal server error", **extra),
        headers=_rate_limit_headers(request),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InfrastructureError, infrastructure_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
