import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware

from .observability import correlation_context

logger = logging.getLogger("app.request")

REQUEST_ID_HEADER = "x-request-id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        client_host = request.client.host if request.client else None
        ip = request.headers.get("x-forwarded-for", client_host)
        request.state.ip = ip
        request.state.user_agent = request.headers.get("user-agent")

        with correlation_context(request.headers.get(REQUEST_ID_HEADER)) as correlation_id:
            request.state.correlation_id = correlation_id
            started = time.perf_counter()
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "%s %s -> %s (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                ip,
            )
            response.headers[REQUEST_ID_HEADER] = correlation_id
        return response
