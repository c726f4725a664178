from __future__ import annotations

import logging

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from salescrm.context import CORRELATION_HEADER, reset_correlation_id, resolve_correlation_id, set_correlation_id


logger = logging.getLogger("salescrm.request")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Gives every request one correlation id for logs, audit rows, spans and the response header.

    A malformed incoming header is replaced rather than echoed.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        supplied = request.headers.get(CORRELATION_HEADER)
        correlation_id = resolve_correlation_id(supplied)
        if supplied is not None and supplied.strip() != correlation_id:
            logger.warning("correlation_id.replaced", extra={"path": request.url.path})

        request.state.correlation_id = correlation_id
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
