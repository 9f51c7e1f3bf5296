"""Last-resort handler for exceptions nothing else caught."""

import logging
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.utils.logging_utils import redact_ip

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Turn uncaught exceptions into a generic 500.

    Domain errors (``AppError``) never reach this middleware; they are rendered
    by the exception handler in ``app.main``. Whatever arrives here is a bug or
    an infrastructure failure, so clients get no internals outside DEBUG.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            # The exception text can carry query parameters (tokens), so it is
            # logged by type only.
            logger.error(
                "Unhandled exception | method=%s | path=%s | ip=%s | error=%s",
                request.method,
                request.url.path,
                redact_ip(request.client.host if request.client else None),
                type(exc).__name__,
                exc_info=settings.DEBUG,
            )

            if settings.DEBUG:
                message = f"{type(exc).__name__}: {exc}"
            else:
                message = "An unexpected error occurred. Please try again later."

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": {"code": "INTERNAL_ERROR", "message": message}},
            )
