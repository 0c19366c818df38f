"""
Admin API: moderation, overrides and exports.

Every route requires require_admin (X-Admin-Key or a trusted network).
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from ideaboard.api.comments import comment_to_dict
from ideaboard.api.deps import get_services
from ideaboard.core.admin_auth import AdminActor, require_admin
from ideaboard.features.ideas.service import idea_to_dict
from ideaboard.models.comment import BulkDeleteRequest
from ideaboard.models.idea import IdeaUpdateRequest, TallyOverrideRequest
from ideaboard.models.session import PaywallToggleRequest

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _admin_idea(idea, upvotes_given: int) -> dict:
    # Admins see links regardless of tally.
    data = idea_to_dict(idea, idea.owner, link_threshold=0)
    data["upvotes_given"] = upvotes_given
    data["session_id"] = idea.session_id
    data["user_id"] = idea.user_id
    return data


@router.get("/ideas")
def list_ideas(
    sort: Literal["votes", "recent"] = Query("recent"),
    actor: AdminActor = Depends(require_admin),
    services=Depends(get_services),
):
    return [_admin_idea(idea, given) for idea, given in services.admin.ideas_with_upvotes_given(sort)]


@router.put("/ideas/{idea_id}")
def update_idea(
    idea_id: int,
    body: IdeaUpdateRequest,
    actor: AdminActor = Depends(require_admin),
    services=Depends(get_services),
):
    idea = services.admin.update_idea(idea_id, body)
    return idea_to_dict(idea, idea.owner, link_threshold=0)


@router.delete("/ideas/{idea_id}")
def delete_idea(idea_id: int, actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    services.admin.delete_idea(idea_id)
    return {"message": "Idea deleted successfully", "idea_id": idea_id}


@router.patch("/ideas/{idea_id}/votes")
def override_votes(
    idea_id: int,
    body: TallyOverrideRequest,
    actor: AdminActor = Depends(require_admin),
    services=Depends(get_services),
):
    votes = services.admin.set_tally(idea_id, body.votes)
    return {"message": "Vote count updated successfully", "votes": votes}


@router.post("/delete-duplicates")
def delete_duplicates(actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    deleted = services.admin.delete_duplicates()
    return {"message": f"Deleted {len(deleted)} duplicate entries", "deleted_ids": deleted}


@router.get("/paywall-status")
def paywall_status(actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    return {"enabled": services.admin.paywall_status().paywall_enabled}


@router.post("/paywall-toggle")
def toggle_paywall(
    body: PaywallToggleRequest,
    actor: AdminActor = Depends(require_admin),
    services=Depends(get_services),
):
    flags = services.admin.set_paywall_enabled(body.enabled)
    return {
        "enabled": flags.paywall_enabled,
        "message": "Paywall enabled" if flags.paywall_enabled else "Paywall disabled",
    }


@router.get("/export")
def export_csv(actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    return Response(
        content=services.admin.export_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="ai-ideas-export.csv"'},
    )


@router.get("/user-stats")
def user_stats(actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    return services.admin.user_stats()


@router.get("/upvote-trends")
def upvote_trends(actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    return services.admin.upvote_trends()


@router.get("/subscribers")
def subscribers(actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    return [sub.model_dump(mode="json") for sub in services.admin.subscribers()]


@router.get("/comments")
def list_comments(actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    return [comment_to_dict(comment) for comment in services.admin.list_comments()]


@router.delete("/comments/{comment_id}")
def delete_comment(comment_id: int, actor: AdminActor = Depends(require_admin), services=Depends(get_services)):
    return {"deleted_ids": services.admin.delete_comment(comment_id)}


@router.post("/comments/bulk-delete")
def bulk_delete_comments(
    body: BulkDeleteRequest,
    actor: AdminActor = Depends(require_admin),
    services=Depends(get_services),
):
    deleted = services.admin.bulk_delete_comments(body.comment_ids)
    return {"message": f"Deleted {len(deleted)} comments", "deleted_ids": deleted}
