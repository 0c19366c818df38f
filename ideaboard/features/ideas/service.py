"""
ideaboard/features/ideas/service.py

Submission, the gated feed, direct links, and the public shape of an idea.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import BackgroundTasks

from ideaboard.core.errors import ContentRejectedError, NotFoundError
from ideaboard.core.identity import Identity, RequestContext, display_name
from ideaboard.core.logging import log_event
from ideaboard.core.metrics import ideas_submitted_total
from ideaboard.features.gate.service import FeatureFlagStore, require_feed_access, shared_link_bypass
from ideaboard.features.integrations.dispatcher import SideEffectDispatcher, run_after_response
from ideaboard.features.integrations.grader import IdeaGrader
from ideaboard.features.moderation.content_filter import check_idea
from ideaboard.features.store.base import ContentStore, FeedFilters, FeedOrder
from ideaboard.models.idea import Idea, IdeaCreateRequest

logger = logging.getLogger("ideaboard.ideas")


def idea_to_dict(idea: Idea, viewer: Optional[Identity], link_threshold: int = 10) -> dict:
    """Serialize an idea; the link stays hidden until it earns enough votes."""
    is_owner = idea.is_owned_by(viewer)
    link_visible = is_owner or idea.votes >= link_threshold
    return {
        "id": idea.id,
        "title": idea.title,
        "body": idea.body,
        "category": idea.category,
        "tools": idea.tools,
        "votes": idea.votes,
        "ai_grade": idea.ai_grade,
        "author": display_name(idea.owner),
        "is_owner": is_owner,
        "is_test": idea.is_test,
        "link_url": idea.link_url if link_visible else None,
        "link_locked": bool(idea.link_url) and not link_visible,
        "submitted_at": idea.submitted_at.isoformat(),
    }


class IdeaService:
    def __init__(
        self,
        store: ContentStore,
        flag_store: FeatureFlagStore,
        *,
        dispatcher: Optional[SideEffectDispatcher] = None,
        grader: Optional[IdeaGrader] = None,
        test_submission_ttl_seconds: float = 10.0,
        time_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.flag_store = flag_store
        self.dispatcher = dispatcher
        self.grader = grader
        self.test_submission_ttl_seconds = test_submission_ttl_seconds
        self.time_fn = time_fn or (lambda: datetime.now(timezone.utc))

    def submit(self, ctx: RequestContext, request: IdeaCreateRequest, tasks: Optional[BackgroundTasks] = None) -> Idea:
        identity = ctx.require_identity()
        verdict = check_idea(request.body)
        if not verdict.is_valid:
            ideas_submitted_total.inc(labels={"outcome": "rejected"})
            log_event("info", "idea.rejected", identity=identity.key, error_code="content_rejected", extra={"reason": verdict.reason})
            raise ContentRejectedError(verdict.reason)

        now = self.time_fn()
        with self.store.transaction() as tx:
            idea = tx.create_idea(
                owner=identity,
                body=request.body.strip(),
                submitted_at=now,
                title=request.title,
                category=request.category,
                tools=request.tools,
                link_url=request.link_url,
                is_test=verdict.is_test_submission,
            )
            tx.ensure_actor(identity, now)
            tx.update_actor(identity, has_submitted=True, last_activity_at=now)

        ideas_submitted_total.inc(labels={"outcome": "accepted"})
        log_event("info", "idea.submitted", identity=identity.key, idea_id=idea.id, extra={"is_test": idea.is_test})

        if self.grader is not None and self.grader.enabled:
            run_after_response(tasks, self.grade_idea, idea.id)
        if idea.is_test and self.dispatcher is not None:
            self.dispatcher.schedule(self.test_submission_ttl_seconds, self.delete_test_submission, idea.id)
        return idea

    def feed(
        self,
        ctx: RequestContext,
        order: FeedOrder = "votes",
        filters: Optional[FeedFilters] = None,
    ) -> List[Idea]:
        identity = ctx.require_identity()
        flags = self.flag_store.load()
        with self.store.transaction() as tx:
            state = tx.get_actor(identity)
            require_feed_access(state, flags, shared_link_bypass(state, ctx.shared_access))
            return tx.ideas_sorted_by(order, filters)

    def get(self, ctx: RequestContext, idea_id: int) -> Idea:
        """Direct link to one idea; arriving with the shared flag grants sticky access."""
        flags = self.flag_store.load()
        now = self.time_fn()
        with self.store.transaction() as tx:
            idea = tx.get_idea(idea_id)
            if idea is None:
                raise NotFoundError(f"Idea {idea_id} not found")
            state = tx.get_actor(ctx.identity) if ctx.identity else None
            if ctx.shared_access and ctx.identity is not None:
                tx.ensure_actor(ctx.identity, now)
                state = tx.update_actor(ctx.identity, shared_access=True, last_activity_at=now)
            require_feed_access(state, flags, shared_link_bypass(state, ctx.shared_access))
            return idea

    def grade_idea(self, idea_id: int) -> Optional[float]:
        with self.store.transaction() as tx:
            idea = tx.get_idea(idea_id)
        if idea is None or self.grader is None:
            return None
        score = self.grader.grade(idea)
        with self.store.transaction() as tx:
            tx.update_idea(idea_id, ai_grade=f"{score:.1f}")
        log_event("info", "idea.graded", idea_id=idea_id, extra={"score": score})
        return score

    def delete_test_submission(self, idea_id: int) -> bool:
        with self.store.transaction() as tx:
            idea = tx.get_idea(idea_id)
            if idea is None or not idea.is_test:
                return False
            tx.delete_idea(idea_id)
        log_event("info", "idea.test_deleted", idea_id=idea_id)
        return True
