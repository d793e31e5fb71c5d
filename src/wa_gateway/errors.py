"""Gateway error types and their HTTP rendering."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class GatewayError(Exception):
    """Base error reported to HTTP callers as ``{"error", "code"}``."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **extra) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_content(self) -> dict:
        return {"error": self.message, "code": self.code, **self.extra}


class RequestValidationFailed(GatewayError):
    """Required request fields are missing or empty."""

    status_code = 400
    code = "validation_error"


class SessionNotFound(GatewayError):
    """No session registered under the requested id."""

    status_code = 404
    code = "not_found"

    def __init__(self, session_id: str, **extra) -> None:
        super().__init__("Session not found", **extra)
        self.session_id = session_id


class SessionNotConnected(GatewayError):
    """Session is absent or not ready to send messages."""

    status_code = 400
    code = "not_connected"

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not connected")
        self.session_id = session_id


class MessageSendFailed(GatewayError):
    """The protocol client rejected an outgoing message."""

    status_code = 500
    code = "send_failed"


class InstanceCreateFailed(GatewayError):
    """Opening a new protocol connection failed."""

    status_code = 500
    code = "internal_error"


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render gateway errors."""
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report missing/invalid request fields as 400 instead of 422."""
    fields = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        if location:
            fields.append(".".join(location))

    message = (
        f"{' and '.join(fields)} required" if fields else "Invalid request body"
    )
    logger.warning("Request validation failed", path=request.url.path, fields=fields)
    error = RequestValidationFailed(message, fields=fields)
    return JSONResponse(status_code=error.status_code, content=error.to_content())


def register_error_handlers(app: FastAPI) -> None:
    """Attach gateway exception handlers to the application."""
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
