"""Fixed per-request time budget."""
import asyncio
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..errors import error_response

logger = logging.getLogger(__name__)


class TimeoutMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, timeout_seconds: float = 30.0):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s %s timed out after %ss", request.method, request.url.path, self.timeout_seconds)
            return error_response(408, "REQUEST_TIMEOUT", "Request took too long to complete.")
