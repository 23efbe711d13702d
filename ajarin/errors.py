"""Error taxonomy shared by the engines.

Engines raise these; a single exception handler installed on the app turns
them into ``{"detail": ...}`` JSON responses with the matching status code.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("ajarin.errors")


class AjarinError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"detail": self.message}
        body.update(self.extra)
        return body


class ValidationError(AjarinError):
    """Malformed input, rejected before any state is touched."""
    status_code = 400


class PermissionDenied(AjarinError):
    """Caller lacks the enrollment or ownership relation the operation needs."""
    status_code = 403


class NotFoundError(AjarinError):
    status_code = 404


class ConflictError(AjarinError):
    """The current state of a record does not allow the requested change."""
    status_code = 409


class StorageError(AjarinError):
    """The file storage backend failed; the caller may retry."""
    status_code = 502
    retryable = True

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryable"] = True
        return body


async def ajarin_error_handler(request: Request, exc: AjarinError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app):
    app.add_exception_handler(AjarinError, ajarin_error_handler)
