"""
ideaboard/features/store/memory.py

In-process content store used when DATABASE_URL is unset (dev, tests).
A re-entrant lock serializes transactions; a failed transaction restores the
snapshot taken when it began, so no partial vote can survive an error.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ideaboard.core.errors import ConflictError, NotFoundError
from ideaboard.core.identity import Identity
from ideaboard.features.store.base import (
    IDEA_EDITABLE_FIELDS,
    ContentStore,
    ContentTransaction,
    FeedFilters,
    FeedOrder,
    matches_tag,
)
from ideaboard.models.comment import Comment
from ideaboard.models.idea import Idea
from ideaboard.models.session import ActorState, Subscription
from ideaboard.models.vote import CommentVote, Vote


@dataclass
class _State:
    ideas: Dict[int, Idea] = field(default_factory=dict)
    votes: Dict[Tuple[str, int], Vote] = field(default_factory=dict)
    vote_events: List[Vote] = field(default_factory=list)
    actors: Dict[str, ActorState] = field(default_factory=dict)
    comments: Dict[int, Comment] = field(default_factory=dict)
    comment_votes: Dict[Tuple[str, int], CommentVote] = field(default_factory=dict)
    subscriptions: Dict[int, Subscription] = field(default_factory=dict)
    next_idea_id: int = 1
    next_comment_id: int = 1
    next_subscription_id: int = 1

    def snapshot(self) -> "_State":
        # Records are frozen models, so copying the containers is enough.
        return replace(
            self,
            ideas=dict(self.ideas),
            votes=dict(self.votes),
            vote_events=list(self.vote_events),
            actors=dict(self.actors),
            comments=dict(self.comments),
            comment_votes=dict(self.comment_votes),
            subscriptions=dict(self.subscriptions),
        )


def _owner_fields(owner: Identity) -> dict:
    if owner.kind == "user":
        return {"user_id": owner.id, "session_id": None}
    return {"user_id": None, "session_id": owner.id}


class _MemoryTransaction(ContentTransaction):
    def __init__(self, state: _State):
        self._s = state

    # Ideas -----------------------------------------------------------
    def create_idea(self, *, owner, body, submitted_at, title=None, category=None, tools=None, link_url=None, is_test=False):
        idea = Idea(
            id=self._s.next_idea_id,
            body=body,
            title=title,
            category=category or "other",
            tools=tools,
            link_url=link_url,
            votes=0,
            is_test=is_test,
            submitted_at=submitted_at,
            **_owner_fields(owner),
        )
        self._s.ideas[idea.id] = idea
        self._s.next_idea_id += 1
        return idea

    def get_idea(self, idea_id, *, for_update=False):
        return self._s.ideas.get(idea_id)

    def ideas_sorted_by(self, order: FeedOrder, filters: Optional[FeedFilters] = None):
        filters = filters or FeedFilters()
        items = [
            idea
            for idea in self._s.ideas.values()
            if matches_tag(idea.category, filters.category_filter) and matches_tag(idea.tools, filters.tool_filter)
        ]
        if order == "recent":
            return sorted(items, key=lambda i: (i.submitted_at, i.id), reverse=True)
        return sorted(items, key=lambda i: (-i.votes, i.id))

    def ideas_owned_by(self, identity):
        owned = [idea for idea in self._s.ideas.values() if idea.is_owned_by(identity)]
        return sorted(owned, key=lambda i: (i.submitted_at, i.id))

    def update_idea(self, idea_id, **fields):
        idea = self._s.ideas.get(idea_id)
        if idea is None:
            return None
        updates = {k: v for k, v in fields.items() if k in IDEA_EDITABLE_FIELDS}
        idea = idea.model_copy(update=updates)
        self._s.ideas[idea_id] = idea
        return idea

    def delete_idea(self, idea_id):
        if self._s.ideas.pop(idea_id, None) is None:
            return False
        for key in [k for k, v in self._s.votes.items() if v.idea_id == idea_id]:
            del self._s.votes[key]
        doomed = {c.id for c in self._s.comments.values() if c.idea_id == idea_id}
        self._drop_comments(doomed)
        return True

    def increment_tally(self, idea_id, delta):
        idea = self._s.ideas.get(idea_id)
        if idea is None:
            raise NotFoundError(f"Idea {idea_id} not found")
        idea = idea.model_copy(update={"votes": idea.votes + delta})
        self._s.ideas[idea_id] = idea
        return idea.votes

    def set_tally(self, idea_id, value):
        idea = self._s.ideas.get(idea_id)
        if idea is None:
            return None
        self._s.ideas[idea_id] = idea.model_copy(update={"votes": value})
        return value

    # Votes -----------------------------------------------------------
    def find_vote(self, voter_key, idea_id):
        return self._s.votes.get((voter_key, idea_id))

    def save_vote(self, vote):
        self._s.votes[(vote.voter_key, vote.idea_id)] = vote
        self._s.vote_events.append(vote)

    def find_recent_votes(self, *, since, voter_key=None, ip=None):
        found = [
            v
            for v in self._s.vote_events
            if v.cast_at >= since
            and (voter_key is None or v.voter_key == voter_key)
            and (ip is None or v.ip_address == ip)
        ]
        return list(reversed(sorted(found, key=lambda v: v.cast_at)))

    def votes_cast_by(self, voter_keys: Iterable[str]):
        wanted = set(voter_keys)
        return [v for v in self._s.votes.values() if v.voter_key in wanted]

    # Actors ----------------------------------------------------------
    def get_actor(self, identity):
        return self._s.actors.get(identity.key)

    def ensure_actor(self, identity, now):
        actor = self._s.actors.get(identity.key)
        if actor is None:
            actor = ActorState(identity_key=identity.key, created_at=now, last_activity_at=now)
            self._s.actors[identity.key] = actor
        return actor

    def update_actor(self, identity, **fields):
        actor = self._s.actors.get(identity.key)
        if actor is None:
            raise NotFoundError(f"No state for {identity.key}")
        actor = actor.model_copy(update=fields)
        self._s.actors[identity.key] = actor
        return actor

    def increment_upvotes_given(self, identity):
        actor = self._s.actors.get(identity.key)
        if actor is None:
            raise NotFoundError(f"No state for {identity.key}")
        actor = actor.model_copy(update={"upvotes_given": actor.upvotes_given + 1})
        self._s.actors[identity.key] = actor
        return actor.upvotes_given

    def list_actors(self):
        return list(self._s.actors.values())

    # Comments --------------------------------------------------------
    def create_comment(self, *, owner, idea_id, parent_id, body, created_at):
        comment = Comment(
            id=self._s.next_comment_id,
            idea_id=idea_id,
            parent_id=parent_id,
            body=body,
            votes=0,
            created_at=created_at,
            **_owner_fields(owner),
        )
        self._s.comments[comment.id] = comment
        self._s.next_comment_id += 1
        return comment

    def get_comment(self, comment_id):
        return self._s.comments.get(comment_id)

    def comments_for_idea(self, idea_id):
        found = [c for c in self._s.comments.values() if c.idea_id == idea_id]
        return sorted(found, key=lambda c: (c.created_at, c.id))

    def list_comments(self):
        return sorted(self._s.comments.values(), key=lambda c: (c.created_at, c.id), reverse=True)

    def delete_comment(self, comment_id):
        if comment_id not in self._s.comments:
            return []
        doomed = {comment_id}
        frontier = [comment_id]
        while frontier:
            parent = frontier.pop()
            children = [c.id for c in self._s.comments.values() if c.parent_id == parent]
            doomed.update(children)
            frontier.extend(children)
        self._drop_comments(doomed)
        return sorted(doomed)

    def _drop_comments(self, doomed):
        for cid in doomed:
            self._s.comments.pop(cid, None)
        for key in [k for k in self._s.comment_votes if k[1] in doomed]:
            del self._s.comment_votes[key]

    def increment_comment_tally(self, comment_id, delta):
        comment = self._s.comments.get(comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} not found")
        comment = comment.model_copy(update={"votes": comment.votes + delta})
        self._s.comments[comment_id] = comment
        return comment.votes

    def find_comment_vote(self, voter_key, comment_id):
        return self._s.comment_votes.get((voter_key, comment_id))

    def save_comment_vote(self, vote):
        self._s.comment_votes[(vote.voter_key, vote.comment_id)] = vote

    def find_recent_comment_votes(self, *, since, voter_key=None, ip=None):
        found = [
            v
            for v in self._s.comment_votes.values()
            if v.created_at >= since
            and (voter_key is None or v.voter_key == voter_key)
            and (ip is None or v.ip_address == ip)
        ]
        return sorted(found, key=lambda v: v.created_at, reverse=True)

    # Subscriptions ---------------------------------------------------
    def create_subscription(self, *, email, source, session_id, subscribed_at):
        if self.get_subscription_by_email(email) is not None:
            raise ConflictError("Email already subscribed")
        sub = Subscription(
            id=self._s.next_subscription_id,
            email=email,
            source=source,
            session_id=session_id,
            subscribed_at=subscribed_at,
        )
        self._s.subscriptions[sub.id] = sub
        self._s.next_subscription_id += 1
        return sub

    def get_subscription_by_email(self, email):
        wanted = email.lower()
        return next((s for s in self._s.subscriptions.values() if s.email.lower() == wanted), None)

    def list_subscriptions(self):
        return sorted(self._s.subscriptions.values(), key=lambda s: s.id)


class InMemoryContentStore(ContentStore):
    def __init__(self):
        self._state = _State()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[ContentTransaction]:
        with self._lock:
            before = self._state.snapshot()
            try:
                yield _MemoryTransaction(self._state)
            except BaseException:
                self._state = before
                raise

    def ping(self) -> bool:
        return True
