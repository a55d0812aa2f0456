"""
Global Exception Handling

Typed failures raised by the artifact pipeline and the handlers that turn
each of them into exactly one structured JSON response.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolbox.core.logging import get_logger, request_id_var, operation_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ToolboxBaseException(Exception):
    """Base exception for the toolbox pipeline."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        operation: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.operation = operation or operation_var.get()
        self.request_id = request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationFailure(ToolboxBaseException):
    """Missing or malformed request inputs. Caller error, never retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class StorageFailure(ToolboxBaseException):
    """The artifact volume is unavailable, unwritable or full."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class TransformFailure(ToolboxBaseException):
    """A strategy ran but could not produce a valid output."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class NotFound(ToolboxBaseException):
    """An artifact was referenced after it had been reclaimed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=404, **kwargs)


class UnknownOperation(ToolboxBaseException):
    """No transform is registered under the requested operation id."""

    def __init__(self, operation: str, **kwargs):
        super().__init__(
            f"Operation '{operation}' is not implemented." if operation
            else "No operation given. GET /api/operations lists the available ones.",
            code=404,
            operation=operation,
            **kwargs
        )


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_body(
    message: str,
    code: int,
    request_id: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    body = {
        "error": message,
        "code": code,
        "request_id": request_id or request_id_var.get(),
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }
    body.update({k: v for k, v in extra.items() if v})
    return body


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ToolboxBaseException)
    async def toolbox_exception_handler(request: Request, exc: ToolboxBaseException):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "toolbox_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            operation=exc.operation,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content=_error_body(
                exc.message,
                exc.code,
                request_id=exc.request_id,
                operation=exc.operation,
                stage=exc.stage,
                details=exc.details
            )
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), exc.status_code),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content=_error_body("Internal server error", 500)
        )
