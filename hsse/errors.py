"""
HSSE - Domain exceptions and their HTTP mapping.

Domain functions raise these; route handlers let them propagate and the
handlers installed by register_error_handlers() turn them into the common
{"ok": False, "error": ...} body.
"""
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class HSSEError(Exception):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class DomainError(HSSEError):
    """Validation failure or illegal state transition."""
    status_code = 400


class AuthRequired(HSSEError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDenied(HSSEError):
    status_code = 403

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


class NotFoundError(HSSEError):
    status_code = 404

    def __init__(self, entity: str, key=None):
        msg = f"{entity} not found" if key is None else f"{entity} {key} not found"
        super().__init__(msg)


def require(condition, message: str):
    """Raise DomainError(message) unless condition holds."""
    if not condition:
        raise DomainError(message)


def register_error_handlers(app: FastAPI):
    """Install the exception -> status code mapping."""

    @app.exception_handler(HSSEError)
    async def _hsse_error(request: Request, exc: HSSEError):
        if exc.status_code >= 500:
            logger.error("[Error] %s %s: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("[Error] %s %s -> %s: %s", request.method, request.url.path,
                        exc.status_code, exc.message)
        return JSONResponse({"ok": False, "error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("[Error] Unhandled %s %s:\n%s", request.method, request.url.path,
                     traceback.format_exc())
        return JSONResponse({"ok": False, "error": "Internal server error"}, status_code=500)
