from fastapi import APIRouter, Depends, Request

from ideaboard.api.deps import get_request_context, get_services
from ideaboard.core.admin_auth import is_admin_request
from ideaboard.core.identity import RequestContext, display_name
from ideaboard.models.comment import Comment, CommentCreateRequest
from ideaboard.models.vote import VoteRequest

router = APIRouter(prefix="/api", tags=["comments"])


def comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "idea_id": comment.idea_id,
        "parent_id": comment.parent_id,
        "body": comment.body,
        "votes": comment.votes,
        "author": display_name(comment.owner),
        "created_at": comment.created_at.isoformat(),
    }


@router.get("/ideas/{idea_id}/comments")
def list_comments(idea_id: int, services=Depends(get_services)):
    return [node.model_dump(mode="json") for node in services.comments.thread(idea_id)]


@router.post("/ideas/{idea_id}/comments")
def post_comment(
    idea_id: int,
    body: CommentCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    return comment_to_dict(services.comments.post_comment(ctx, idea_id, body.body))


@router.post("/comments/{comment_id}/replies")
def reply_to_comment(
    comment_id: int,
    body: CommentCreateRequest,
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    return comment_to_dict(services.comments.reply(ctx, comment_id, body.body))


@router.post("/comments/{comment_id}/vote")
def vote_on_comment(
    comment_id: int,
    body: VoteRequest,
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    result = services.comments.vote_comment(ctx, comment_id, body.vote_type)
    return {"comment_id": result.comment_id, "votes": result.new_tally, "duplicate": result.duplicate}


@router.delete("/comments/{comment_id}")
def delete_comment(
    comment_id: int,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    deleted = services.comments.delete_comment(ctx, comment_id, is_admin=is_admin_request(request))
    return {"deleted_ids": deleted}
