"""Translate identity errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..errors import ErrorKind, IdentityError

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.conflict: status.HTTP_409_CONFLICT,
    ErrorKind.authentication: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.validation: status.HTTP_400_BAD_REQUEST,
    ErrorKind.database: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.email_delivery: status.HTTP_502_BAD_GATEWAY,
}


def status_for(exc: IdentityError) -> int:
    return _STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.reason,
            type(exc.__cause__).__name__ if exc.__cause__ else "no cause",
        )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "reason": exc.reason})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IdentityError, identity_error_handler)
