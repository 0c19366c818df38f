from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from ideaboard.core.metrics import METRICS

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
def metrics_endpoint():
    """Prometheus scrape target for request, vote, comment-vote and reward counters."""
    return PlainTextResponse(METRICS.export_prometheus(), media_type="text/plain; version=0.0.4; charset=utf-8")
