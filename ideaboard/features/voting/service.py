"""
ideaboard/features/voting/service.py

Vote engine. Preconditions are checked in a fixed order inside one store
transaction; the first failure wins and nothing is written:

1. idea exists
2. submission gate (paywall) is open for the voter
3. downvotes need the idea's tally at or above the threshold
4. no voting on your own idea
5. identity cooldown, then per-IP windows (a trusted socket peer skips both)
6. dedup: same direction is a no-op, a flip moves the tally by 2
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ideaboard.core.errors import (
    AppError,
    DownvoteLockedError,
    InvalidDirectionError,
    NotFoundError,
    SelfVoteError,
    SubmissionRequiredError,
)
from ideaboard.core.identity import RequestContext, TrustedNetworkPolicy
from ideaboard.core.logging import log_event
from ideaboard.core.metrics import reward_grants_total, vote_rejections_total, votes_total
from ideaboard.features.gate.service import FeatureFlagStore, can_view_feed
from ideaboard.features.rewards.service import RewardMechanism
from ideaboard.features.store.base import ContentStore, ContentTransaction
from ideaboard.features.voting.policy import VotingPolicy
from ideaboard.features.voting.rate_limits import check_identity_cooldown, check_ip_windows
from ideaboard.models.vote import DIRECTION_DELTA, Vote, VoteResult

logger = logging.getLogger("ideaboard.voting")


class VoteEngine:
    def __init__(
        self,
        store: ContentStore,
        flag_store: FeatureFlagStore,
        *,
        policy: Optional[VotingPolicy] = None,
        rewards: Optional[RewardMechanism] = None,
        trusted: Optional[TrustedNetworkPolicy] = None,
        time_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.flag_store = flag_store
        self.policy = policy or VotingPolicy()
        self.rewards = rewards or RewardMechanism(self.policy.reward_batch_size)
        self.trusted = trusted or TrustedNetworkPolicy()
        self.time_fn = time_fn or (lambda: datetime.now(timezone.utc))

    def cast_vote(self, ctx: RequestContext, idea_id: int, direction: str) -> VoteResult:
        identity = ctx.require_identity()
        try:
            if direction not in DIRECTION_DELTA:
                raise InvalidDirectionError("Vote type must be 'up' or 'down'")
            flags = self.flag_store.load()
            with self.store.transaction() as tx:
                result = self._cast(tx, ctx, idea_id, direction, flags)
        except AppError as exc:
            vote_rejections_total.inc(labels={"code": exc.code})
            votes_total.inc(labels={"direction": str(direction), "outcome": "rejected"})
            log_event(
                "info",
                "vote.rejected",
                identity=identity.key,
                idea_id=idea_id,
                error_code=exc.code,
                extra={"direction": direction},
            )
            raise

        outcome = "noop" if not result.changed else "accepted"
        votes_total.inc(labels={"direction": direction, "outcome": outcome})
        log_event(
            "info",
            "vote.accepted",
            identity=identity.key,
            idea_id=idea_id,
            extra={"direction": direction, "new_tally": result.new_tally, "changed": result.changed},
        )
        if result.reward is not None:
            reward_grants_total.inc()
            log_event(
                "info",
                "reward.granted",
                identity=identity.key,
                idea_id=result.reward.idea_id,
                extra={"upvotes_given": result.reward.upvotes_given, "new_tally": result.reward.new_tally},
            )
        return result

    def _cast(self, tx: ContentTransaction, ctx: RequestContext, idea_id: int, direction: str, flags) -> VoteResult:
        identity = ctx.identity
        now = self.time_fn()

        # Lock order: actor row, then idea row.
        state = tx.lock_actor(identity, now)
        idea = tx.get_idea(idea_id, for_update=True)
        if idea is None:
            raise NotFoundError(f"Idea {idea_id} not found")

        # Direct-link access lets a visitor read, not vote.
        if not can_view_feed(state, flags):
            raise SubmissionRequiredError("Submit an idea before voting")

        if direction == "down" and idea.votes < self.policy.downvote_threshold:
            raise DownvoteLockedError(self.policy.downvote_threshold, idea.votes)

        if idea.is_owned_by(identity):
            raise SelfVoteError("You can't vote on your own idea")

        if not self.trusted.is_trusted(ctx.peer_ip):
            self._check_rate_limits(tx, identity.key, ctx.client_ip, now)

        existing = tx.find_vote(identity.key, idea_id)
        if existing is not None and existing.vote_type == direction:
            return VoteResult(idea_id=idea_id, new_tally=idea.votes, recorded_direction=direction, changed=False)

        delta = DIRECTION_DELTA[direction]
        if existing is not None:
            delta *= 2
        tx.save_vote(
            Vote(
                voter_key=identity.key,
                idea_id=idea_id,
                vote_type=direction,
                ip_address=ctx.client_ip,
                created_at=existing.created_at if existing else now,
                cast_at=now,
            )
        )
        new_tally = tx.increment_tally(idea_id, delta)
        tx.update_actor(identity, last_activity_at=now)

        reward = None
        if direction == "up" and existing is None:
            reward = self.rewards.on_upvote_given(tx, identity)
        return VoteResult(
            idea_id=idea_id,
            new_tally=new_tally,
            recorded_direction=direction,
            changed=True,
            reward=reward,
        )

    def _check_rate_limits(self, tx: ContentTransaction, voter_key: str, ip: str, now: datetime) -> None:
        def recent(**kwargs):
            return [vote.cast_at for vote in tx.find_recent_votes(**kwargs)]

        check_identity_cooldown(
            recent,
            voter_key=voter_key,
            now=now,
            cooldown_seconds=self.policy.vote_cooldown_seconds,
        )
        check_ip_windows(
            recent,
            ip=ip,
            now=now,
            windows=self.policy.ip_windows,
            message="Too many votes from your network. Please slow down",
        )
