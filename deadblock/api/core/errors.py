"""Map the coordination error taxonomy onto HTTP responses"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from deadblock.shared.errors import (
    MatchError,
    NotFoundError,
    NotPermittedError,
    StoreConflictError,
    StoreUnavailableError,
    UnauthenticatedError,
)

logger = logging.getLogger(__name__)

# Most specific first
_STATUS_CODES: list[tuple[type[MatchError], int]] = [
    (UnauthenticatedError, 401),
    (NotPermittedError, 403),
    (NotFoundError, 404),
    (StoreConflictError, 409),
    (StoreUnavailableError, 503),
]


def status_code_for(error: MatchError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


async def _match_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, MatchError)
    status_code = status_code_for(exc)
    if status_code == 500:
        logger.exception(f"{request.method} {request.url.path} failed: {exc}")
        detail = "Internal store error"
    else:
        if status_code == 503:
            logger.warning(f"{request.method} {request.url.path}: store unavailable: {exc}")
        detail = str(exc)
    headers = {"Retry-After": "1"} if status_code == 503 else None
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MatchError, _match_error_handler)
