import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests
from services.observability import new_request_id, set_request_id

logger = logging.getLogger("smartchange.http")

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LEN = 128


def _incoming_request_id(request: Request) -> str:
    value = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if not value or len(value) > MAX_REQUEST_ID_LEN:
        return new_request_id()
    return value


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = _incoming_request_id(request)
        start = time.perf_counter()

        request.state.request_id = req_id
        set_request_id(req_id)

        response = None
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = req_id
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            status = getattr(response, "status_code", 500)
            route = request.scope.get("route")
            route_path = getattr(route, "path", None) or "unmatched"

            increment_http_requests(route_path, status)
            logger.info(
                "http_request_end request_id=%s method=%s path=%s status=%s duration_ms=%s",
                req_id,
                request.method,
                request.url.path,
                status,
                duration_ms,
            )
            set_request_id(None)
