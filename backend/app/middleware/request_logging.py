"""Request/response logging middleware."""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging_config import bind_correlation_id, clear_correlation_id
from app.utils.logging_utils import redact_ip


logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with a correlation id.

    The id is taken from an incoming ``X-Request-ID`` header or generated,
    bound into structlog's context so workflow events carry it, and echoed
    back in the response header. Query strings are never logged because
    verification and RSVP tokens travel in them.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = bind_correlation_id(request.headers.get("X-Request-ID"))
        request.state.request_id = request_id

        start_time = time.time()
        method = request.method
        path = request.url.path
        client_host = request.client.host if request.client else "unknown"

        logger.info(
            f"Request started | id={request_id} | method={method} | path={path} | "
            f"ip={redact_ip(client_host)}"
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"Request failed | id={request_id} | method={method} | path={path} | "
                f"duration={duration_ms}ms | error={type(e).__name__}"
            )
            raise
        finally:
            clear_correlation_id()

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Request completed | id={request_id} | method={method} | path={path} | "
            f"status={response.status_code} | duration={duration_ms}ms"
        )
        response.headers["X-Request-ID"] = request_id
        return response
