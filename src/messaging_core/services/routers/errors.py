from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
import logging

from messaging_core.core.exceptions import (
    MessagingError,
    ValidationError,
    NotFoundError,
    ForbiddenError,
    ConflictError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    ConflictError: status.HTTP_409_CONFLICT,
}


def status_code_for(exc: MessagingError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_CODES:
            return STATUS_CODES[exc_type]
    return status.HTTP_400_BAD_REQUEST


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info("%s %s rejected with %s: %s", request.method, request.url.path, status_code, exc.detail)
    return JSONResponse(status_code=status_code, content={"detail": exc.detail})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MessagingError, messaging_error_handler)
