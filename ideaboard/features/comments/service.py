"""
ideaboard/features/comments/service.py

Threaded comments with their own vote dedup. Comment votes are single-shot:
a repeat vote from the same identity is a silent no-op returning the current
tally. A global cooldown per identity and per IP applies first.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ideaboard.core.errors import (
    AppError,
    ContentRejectedError,
    InvalidDirectionError,
    NotFoundError,
    PermissionError,
)
from ideaboard.core.identity import RequestContext, TrustedNetworkPolicy, display_name
from ideaboard.core.logging import log_event
from ideaboard.core.metrics import comment_votes_total
from ideaboard.features.moderation.content_filter import check_comment
from ideaboard.features.store.base import ContentStore, ContentTransaction
from ideaboard.features.voting.policy import VotingPolicy
from ideaboard.features.voting.rate_limits import check_identity_cooldown, check_ip_windows
from ideaboard.models.comment import Comment, CommentNode
from ideaboard.models.vote import DIRECTION_DELTA, CommentVote, CommentVoteResult

logger = logging.getLogger("ideaboard.comments")

COMMENT_RATE_MESSAGE = "Please wait a moment before voting on another comment"


def build_thread(comments: List[Comment]) -> List[CommentNode]:
    """Top-level comments with one level of replies resolved eagerly."""
    children: Dict[int, List[Comment]] = defaultdict(list)
    for comment in comments:
        if comment.parent_id is not None:
            children[comment.parent_id].append(comment)

    def node(comment: Comment, replies: List[CommentNode]) -> CommentNode:
        return CommentNode(
            id=comment.id,
            idea_id=comment.idea_id,
            parent_id=comment.parent_id,
            body=comment.body,
            votes=comment.votes,
            created_at=comment.created_at,
            author=display_name(comment.owner),
            reply_count=len(children.get(comment.id, [])),
            replies=replies,
        )

    return [
        node(top, [node(reply, []) for reply in children.get(top.id, [])])
        for top in comments
        if top.parent_id is None
    ]


class CommentService:
    def __init__(
        self,
        store: ContentStore,
        *,
        policy: Optional[VotingPolicy] = None,
        trusted: Optional[TrustedNetworkPolicy] = None,
        time_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.policy = policy or VotingPolicy()
        self.trusted = trusted or TrustedNetworkPolicy()
        self.time_fn = time_fn or (lambda: datetime.now(timezone.utc))

    def post_comment(self, ctx: RequestContext, idea_id: int, body: str) -> Comment:
        identity = ctx.require_identity()
        self._screen(body)
        now = self.time_fn()
        with self.store.transaction() as tx:
            if tx.get_idea(idea_id) is None:
                raise NotFoundError(f"Idea {idea_id} not found")
            comment = tx.create_comment(owner=identity, idea_id=idea_id, parent_id=None, body=body.strip(), created_at=now)
            tx.ensure_actor(identity, now)
        log_event("info", "comment.posted", identity=identity.key, idea_id=idea_id, comment_id=comment.id)
        return comment

    def reply(self, ctx: RequestContext, parent_id: int, body: str) -> Comment:
        identity = ctx.require_identity()
        self._screen(body)
        now = self.time_fn()
        with self.store.transaction() as tx:
            parent = tx.get_comment(parent_id)
            if parent is None:
                raise NotFoundError(f"Comment {parent_id} not found")
            comment = tx.create_comment(
                owner=identity,
                idea_id=parent.idea_id,
                parent_id=parent.id,
                body=body.strip(),
                created_at=now,
            )
            tx.ensure_actor(identity, now)
        log_event(
            "info",
            "comment.posted",
            identity=identity.key,
            idea_id=comment.idea_id,
            comment_id=comment.id,
            extra={"parent_id": parent_id},
        )
        return comment

    def thread(self, idea_id: int) -> List[CommentNode]:
        with self.store.transaction() as tx:
            if tx.get_idea(idea_id) is None:
                raise NotFoundError(f"Idea {idea_id} not found")
            return build_thread(tx.comments_for_idea(idea_id))

    def vote_comment(self, ctx: RequestContext, comment_id: int, direction: str) -> CommentVoteResult:
        identity = ctx.require_identity()
        if direction not in DIRECTION_DELTA:
            raise InvalidDirectionError("Vote type must be 'up' or 'down'")
        now = self.time_fn()
        try:
            with self.store.transaction() as tx:
                comment = tx.get_comment(comment_id)
                if comment is None:
                    raise NotFoundError(f"Comment {comment_id} not found")
                tx.lock_actor(identity, now)
                if not self.trusted.is_trusted(ctx.peer_ip):
                    self._check_rate_limits(tx, identity.key, ctx.client_ip, now)
                if tx.find_comment_vote(identity.key, comment_id) is not None:
                    result = CommentVoteResult(comment_id=comment_id, new_tally=comment.votes, duplicate=True)
                else:
                    tx.save_comment_vote(
                        CommentVote(
                            voter_key=identity.key,
                            comment_id=comment_id,
                            vote_type=direction,
                            ip_address=ctx.client_ip,
                            created_at=now,
                        )
                    )
                    new_tally = tx.increment_comment_tally(comment_id, DIRECTION_DELTA[direction])
                    result = CommentVoteResult(comment_id=comment_id, new_tally=new_tally)
        except AppError as exc:
            comment_votes_total.inc(labels={"outcome": exc.code})
            raise

        comment_votes_total.inc(labels={"outcome": "duplicate" if result.duplicate else "accepted"})
        log_event(
            "info",
            "comment.voted",
            identity=identity.key,
            comment_id=comment_id,
            extra={"direction": direction, "duplicate": result.duplicate, "new_tally": result.new_tally},
        )
        return result

    def delete_comment(self, ctx: RequestContext, comment_id: int, *, is_admin: bool = False) -> List[int]:
        """Delete a comment with all of its replies. Owners and admins only."""
        with self.store.transaction() as tx:
            comment = tx.get_comment(comment_id)
            if comment is None:
                raise NotFoundError(f"Comment {comment_id} not found")
            if not is_admin and not comment.is_owned_by(ctx.identity):
                raise PermissionError("Only the author can delete this comment")
            deleted = tx.delete_comment(comment_id)
        log_event(
            "info",
            "comment.deleted",
            identity=ctx.identity.key if ctx.identity else None,
            comment_id=comment_id,
            extra={"deleted": len(deleted), "by_admin": is_admin},
        )
        return deleted

    def _screen(self, body: str) -> None:
        verdict = check_comment(body)
        if not verdict.is_valid:
            raise ContentRejectedError(verdict.reason)

    def _check_rate_limits(self, tx: ContentTransaction, voter_key: str, ip: str, now: datetime) -> None:
        def recent(**kwargs):
            return [vote.created_at for vote in tx.find_recent_comment_votes(**kwargs)]

        cooldown = self.policy.comment_vote_cooldown_seconds
        check_identity_cooldown(recent, voter_key=voter_key, now=now, cooldown_seconds=cooldown, message=COMMENT_RATE_MESSAGE)
        if cooldown > 0:
            check_ip_windows(recent, ip=ip, now=now, windows=((cooldown, 1),), message=COMMENT_RATE_MESSAGE)
