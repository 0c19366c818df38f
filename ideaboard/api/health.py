"""
Liveness and readiness probes.

/healthz never touches a dependency. /readyz asks the content store and the
feature-flag store to answer; either failing marks the instance unready.
"""

import logging
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ideaboard.api.deps import get_services

logger = logging.getLogger("ideaboard")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz(request: Request):
    started = getattr(request.app.state, "startup_time", None)
    body = {"status": "ok"}
    if started is not None:
        body["uptime_seconds"] = round(time.time() - started, 1)
    return body


def _probe(name: str, check) -> bool:
    try:
        return bool(check())
    except Exception as exc:
        logger.error("readyz.failed", extra={"error_code": type(exc).__name__, "probe": name})
        return False


@root_router.get("/readyz")
def readyz(services=Depends(get_services)):
    failing = [
        name
        for name, check in (("store", services.store.ping), ("flags", services.flags.load))
        if not _probe(name, check)
    ]
    if failing:
        return JSONResponse(
            status_code=503,
            content={"status": "error", "detail": f"{', '.join(failing)} unreachable"},
        )
    return {"status": "ok", "store": type(services.store).__name__}
