from starlette.middleware.base import BaseHTTPMiddleware

from ideaboard.core.metrics import http_requests_total, normalize_path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count every request against its route template; a raised error counts as a 500."""

    async def dispatch(self, request, call_next):
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            http_requests_total.inc(labels={
                "method": request.method.upper(),
                "path": normalize_path(request.url.path),
                "status": str(status),
            })
