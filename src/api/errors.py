"""
Domain error to HTTP response mapping.

Routes let AccountError subclasses propagate; one handler turns the error's
category into a status code and returns its user-safe message.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.domain.exceptions import AccountError, ErrorCategory

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCategory.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorCategory.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCategory.ATTEMPTS_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCategory.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    status_code = STATUS_BY_CATEGORY[exc.category]
    headers = None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Basic"}
    elif status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        logger.error("Transient failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": exc.message}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AccountError, account_error_handler)
