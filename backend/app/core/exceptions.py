"""
Engine error taxonomy and the FastAPI handlers that map it to responses.

Denials are not errors: the policy evaluator returns them as Decision values.
Everything here is an exceptional path the boundary layer turns into a status code.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class EngineError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Malformed grant, department or enum value - rejected before any mutation"""
    status_code = 400


class NotFoundError(EngineError):
    """Actor, folder or file absent"""
    status_code = 404


class ConflictError(EngineError):
    """Optimistic-concurrency collision - caller should reload and retry"""
    status_code = 409


class LedgerWriteFailure(EngineError):
    """Audit entry could not be written for an access-control mutation"""
    status_code = 500


def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "message": exc.message,
            "retryable": isinstance(exc, ConflictError),
        },
    )
