"""Error taxonomy and the request-boundary handlers that render it.

Learn: services raise these domain exceptions instead of HTTPException,
so the business logic stays independent of FastAPI. The handlers
registered by register_exception_handlers() are the single place where
an exception becomes a status code and a JSON body:

    {"error": "<stable code>", "detail": "<human message>"}

Anything that is not a TaskgateError is logged with its traceback and
answered with a generic 500. Raw store/driver text never reaches the
client.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class TaskgateError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500
    code = "internal_error"
    headers: dict[str, str] | None = None

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail)
        self.detail = detail


class ValidationError(TaskgateError):
    """Missing or malformed input."""

    status_code = 400
    code = "validation_error"


class InvalidCredentials(TaskgateError):
    """Unknown username or wrong password — deliberately indistinguishable."""

    status_code = 401
    code = "invalid_credentials"

    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(detail)


class Unauthorized(TaskgateError):
    """Missing, invalid or expired token, or verification could not complete."""

    status_code = 401
    code = "unauthorized"
    headers = {"WWW-Authenticate": "Bearer"}


class NotFound(TaskgateError):
    """Resource missing, or owned by someone else."""

    status_code = 404
    code = "not_found"


class UpstreamUnavailable(TaskgateError):
    """The identity service could not be reached or answered unexpectedly.

    Never rendered directly: the authorization gateway turns it into
    Unauthorized so a broken upstream can't grant access.
    """

    status_code = 503
    code = "upstream_unavailable"


class InternalError(TaskgateError):
    """Store or other server-side failure."""


def error_body(code: str, detail) -> dict:
    return {"error": code, "detail": detail}


async def _handle_taskgate_error(request: Request, exc: TaskgateError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.failed", path=request.url.path, error=exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.detail),
        headers=exc.headers,
    )


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Only field locations and messages; the raw input is not echoed back.
    problems = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=error_body(ValidationError.code, problems),
    )


def unexpected_error_response(request: Request, exc: Exception) -> JSONResponse:
    """Log an unhandled exception and build the generic 500."""
    logger.error("request.unhandled_error", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_body(InternalError.code, "Internal server error"),
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    return unexpected_error_response(request, exc)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error → response mapping on an app."""
    app.add_exception_handler(TaskgateError, _handle_taskgate_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected)
