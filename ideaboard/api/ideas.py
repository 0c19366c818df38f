from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from ideaboard.api.deps import get_request_context, get_services
from ideaboard.core.identity import RequestContext
from ideaboard.features.ideas.service import idea_to_dict
from ideaboard.features.store.base import FeedFilters
from ideaboard.models.idea import IdeaCreateRequest
from ideaboard.models.vote import VoteRequest, VoteResult

router = APIRouter(prefix="/api/ideas", tags=["ideas"])


def _link_threshold(services) -> int:
    return services.settings.LINK_VISIBILITY_THRESHOLD


def vote_result_to_dict(result: VoteResult) -> dict:
    return {
        "idea_id": result.idea_id,
        "votes": result.new_tally,
        "user_vote": result.recorded_direction,
        "changed": result.changed,
        "reward": result.reward.model_dump() if result.reward else None,
    }


@router.post("")
def submit_idea(
    body: IdeaCreateRequest,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    idea = services.ideas.submit(ctx, body, background_tasks)
    return idea_to_dict(idea, ctx.identity, _link_threshold(services))


@router.get("")
def list_ideas(
    sort: Literal["votes", "recent"] = Query("votes"),
    category: Optional[str] = Query(None, max_length=100),
    tool: Optional[str] = Query(None, max_length=200),
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    """The community feed; closed to identities that have not submitted while the paywall is on."""
    ideas = services.ideas.feed(ctx, sort, FeedFilters(category=category, tool=tool))
    threshold = _link_threshold(services)
    return [idea_to_dict(idea, ctx.identity, threshold) for idea in ideas]


@router.get("/{idea_id}")
def get_idea(
    idea_id: int,
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    idea = services.ideas.get(ctx, idea_id)
    return idea_to_dict(idea, ctx.identity, _link_threshold(services))


@router.post("/{idea_id}/vote")
def vote_on_idea(
    idea_id: int,
    body: VoteRequest,
    ctx: RequestContext = Depends(get_request_context),
    services=Depends(get_services),
):
    result = services.votes.cast_vote(ctx, idea_id, body.vote_type)
    return vote_result_to_dict(result)
