"""Error taxonomy and normalized JSON error handlers."""

import logging
import builtins
import math
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from ideaboard.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500
    # Soft errors are guidance for the client, not failures.
    soft = False

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def extra(self) -> Dict[str, Any]:
        return {}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class IdentityRequiredError(AppError):
    code = "identity_required"
    status_code = 401


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class SubmissionRequiredError(AppError):
    """Raised when the submission gate is closed for the caller."""
    code = "submission_required"
    status_code = 403


class DownvoteLockedError(AppError):
    code = "downvote_locked"
    status_code = 403
    soft = True

    def __init__(self, threshold: int, current_tally: int, **kwargs):
        super().__init__(
            f"Downvoting unlocks once an idea reaches {threshold} votes",
            **kwargs,
        )
        self.threshold = threshold
        self.current_tally = current_tally

    def extra(self) -> Dict[str, Any]:
        return {"threshold": self.threshold, "current_tally": self.current_tally}


class SelfVoteError(AppError):
    code = "self_vote"
    status_code = 400


class InvalidDirectionError(AppError):
    code = "invalid_direction"
    status_code = 400


class ContentRejectedError(AppError):
    code = "content_rejected"
    status_code = 400

    def __init__(self, reason: str, **kwargs):
        super().__init__(reason, **kwargs)
        self.reason = reason

    def extra(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429
    soft = True

    def __init__(self, message: str = "Please take a moment to read before voting again", *, remaining_seconds: float = 0.0, **kwargs):
        super().__init__(message, **kwargs)
        self.remaining_seconds = max(0.0, remaining_seconds)

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(self.remaining_seconds))

    def extra(self) -> Dict[str, Any]:
        return {"remaining_seconds": round(self.remaining_seconds, 3), "retry_after": self.retry_after}


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, *, soft: bool = False, extra: Optional[Dict[str, Any]] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id, "soft": soft}
    if extra:
        error.update(extra)
    return {
        "error": error,
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, soft=exc.soft, extra=exc.extra())
    logger = logging.getLogger("ideaboard")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    if isinstance(exc, RateLimitError):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, str(message), rid)
    logger = logging.getLogger("ideaboard")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    code = "validation_error"
    message = "Invalid request"
    if any("vote_type" in [str(part) for part in err.get("loc", ())] for err in errors):
        code = "invalid_direction"
        message = "Vote type must be 'up' or 'down'"
    payload = _error_payload(
        code,
        message,
        rid,
        extra={"fields": [".".join(str(part) for part in err.get("loc", ())) for err in errors]},
    )
    logging.getLogger("ideaboard").warning("validation.error", extra={"request_id": rid, "error_code": code, "status": 400})
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("ideaboard")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
