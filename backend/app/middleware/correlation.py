"""
Correlation ID middleware
=========================
Injects a unique X-Correlation-ID into every request so that all log lines
for a single HTTP call share the same identifier, including the notification
dispatch that runs after the response is sent.
"""
from __future__ import annotations

import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logger import correlation_id_var

logger = logging.getLogger(__name__)


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        # Accept from client or generate fresh
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)

        try:
            logger.info("request %s %s", request.method, request.url.path)
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers["X-Correlation-ID"] = correlation_id
        return response
