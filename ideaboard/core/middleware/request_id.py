import logging
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from ideaboard.core.logging import LOGGER_NAME, latency_bucket_ms, mask_identity, request_id_ctx_var

MAX_REQUEST_ID_LENGTH = 128

logger = logging.getLogger(LOGGER_NAME)


def accept_request_id(raw: Optional[str]) -> str:
    """Reuse a caller-supplied id when it is sane, otherwise mint a uuid4."""
    candidate = (raw or "").strip()
    if 0 < len(candidate) <= MAX_REQUEST_ID_LENGTH and candidate.isprintable():
        return candidate
    return str(uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request and log one completion line."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = accept_request_id(request.headers.get(self.header_name))
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)

        response.headers[self.header_name] = rid
        status = getattr(response, "status_code", 0)
        identity = getattr(request.state, "identity", None)
        logger.log(
            logging.WARNING if status >= 500 else logging.INFO,
            "request.complete",
            extra={
                "request_id": rid,
                "identity": mask_identity(identity.key) if identity is not None else None,
                "event_type": "request",
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
            },
        )
        return response
