from fastapi import APIRouter, BackgroundTasks, Depends

from ideaboard.api.deps import get_services
from ideaboard.models.session import SubscribeRequest

router = APIRouter(prefix="/api", tags=["public"])


@router.post("/subscribe")
def subscribe(body: SubscribeRequest, background_tasks: BackgroundTasks, services=Depends(get_services)):
    subscription = services.subscriptions.subscribe(body, background_tasks)
    return {
        "message": "Successfully subscribed",
        "subscription": subscription.model_dump(mode="json", exclude={"session_id"}),
    }


@router.get("/stats")
def get_stats(services=Depends(get_services)):
    return services.admin.stats()


@router.get("/paywall-status")
def get_paywall_status(services=Depends(get_services)):
    return {"enabled": services.flags.load().paywall_enabled}
