"""Custom exceptions and FastAPI error handler registration."""
from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .schemas.envelope import ApiResponse

logger = logging.getLogger(__name__)


# ── Custom Exceptions ────────────────────────────────────────────────


class BadParam(Exception):
    """Malformed, missing or inconsistent caller input."""


class NotAuthorized(Exception):
    """The caller may not act as the requested identity."""


class ResourceNotFound(Exception):
    """A referenced script, jar or auxiliary file does not exist."""


class JobNotFoundError(Exception):
    """Requested job ID does not exist."""


class QueueException(Exception):
    """The execution environment refused to accept another job."""


class BusyException(QueueException):
    """Launcher is at capacity; the caller may retry later."""


class ExecuteException(Exception):
    """Launching the controller process failed."""


# ── Error → HTTP mapping ────────────────────────────────────────────

_EXCEPTION_STATUS = {
    BadParam: 400,
    NotAuthorized: 401,
    ResourceNotFound: 404,
    JobNotFoundError: 404,
    BusyException: 503,
    QueueException: 503,
    ExecuteException: 500,
}


def _make_handler(status_code: int):
    """Create a handler that wraps an exception in ApiResponse."""

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        resp = ApiResponse.fail(str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=status_code, content=resp.model_dump())

    return _handler


def register_error_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on the FastAPI app."""
    for exc_cls, status in _EXCEPTION_STATUS.items():
        app.add_exception_handler(exc_cls, _make_handler(status))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
        resp = ApiResponse.fail("Internal server error")
        return JSONResponse(status_code=500, content=resp.model_dump())
