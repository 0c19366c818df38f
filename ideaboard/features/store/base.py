"""
ideaboard/features/store/base.py

Content store contract. Every read and write happens inside
`store.transaction()`, which is the atomic unit: either all of its writes
land or none do. Tally changes go through `increment_tally`, a single
"add delta" operation, never read-then-write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Literal, Optional

from ideaboard.core.identity import Identity
from ideaboard.models.comment import Comment
from ideaboard.models.idea import Idea
from ideaboard.models.session import ActorState, Subscription
from ideaboard.models.vote import CommentVote, Vote

FeedOrder = Literal["votes", "recent"]

IDEA_EDITABLE_FIELDS = ("body", "title", "category", "tools", "link_url", "ai_grade")


@dataclass(frozen=True)
class FeedFilters:
    category: Optional[str] = None
    tool: Optional[str] = None

    @staticmethod
    def _normalize(value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip() or value.strip().lower() == "all":
            return None
        return value.strip()

    @property
    def category_filter(self) -> Optional[str]:
        return self._normalize(self.category)

    @property
    def tool_filter(self) -> Optional[str]:
        return self._normalize(self.tool)


def matches_tag(value: Optional[str], wanted: Optional[str]) -> bool:
    """Case-insensitive tag match; "other" also matches untagged content."""
    if wanted is None:
        return True
    if wanted.lower() == "other":
        return value is None or value.lower() == "other"
    return value is not None and value.lower() == wanted.lower()


class ContentTransaction(ABC):
    """Operations available inside one store transaction."""

    # Ideas -----------------------------------------------------------
    @abstractmethod
    def create_idea(
        self,
        *,
        owner: Identity,
        body: str,
        submitted_at: datetime,
        title: Optional[str] = None,
        category: Optional[str] = None,
        tools: Optional[str] = None,
        link_url: Optional[str] = None,
        is_test: bool = False,
    ) -> Idea: ...

    @abstractmethod
    def get_idea(self, idea_id: int, *, for_update: bool = False) -> Optional[Idea]:
        """With `for_update`, hold a row lock on the idea until the transaction ends."""

    @abstractmethod
    def ideas_sorted_by(self, order: FeedOrder, filters: Optional[FeedFilters] = None) -> List[Idea]:
        """"votes": tally desc, ties by insertion order. "recent": newest first."""

    @abstractmethod
    def ideas_owned_by(self, identity: Identity) -> List[Idea]:
        """Owner's ideas ordered by submission (oldest first)."""

    @abstractmethod
    def update_idea(self, idea_id: int, **fields) -> Optional[Idea]: ...

    @abstractmethod
    def delete_idea(self, idea_id: int) -> bool:
        """Delete an idea with its votes, comments and comment votes."""

    @abstractmethod
    def increment_tally(self, idea_id: int, delta: int) -> int:
        """Atomically add delta to an idea's tally and return the new tally."""

    @abstractmethod
    def set_tally(self, idea_id: int, value: int) -> Optional[int]: ...

    # Votes -----------------------------------------------------------
    @abstractmethod
    def find_vote(self, voter_key: str, idea_id: int) -> Optional[Vote]: ...

    @abstractmethod
    def save_vote(self, vote: Vote) -> None:
        """Insert, or replace the existing (voter, idea) vote."""

    @abstractmethod
    def find_recent_votes(self, *, since: datetime, voter_key: Optional[str] = None, ip: Optional[str] = None) -> List[Vote]:
        """Accepted tally changes at or after `since` by a voter or from an IP, newest first.

        Reads the append-only vote history, so a flip that rewrote a stored vote
        still counts once per change.
        """

    @abstractmethod
    def votes_cast_by(self, voter_keys: Iterable[str]) -> List[Vote]: ...

    # Actors ----------------------------------------------------------
    @abstractmethod
    def get_actor(self, identity: Identity) -> Optional[ActorState]: ...

    @abstractmethod
    def ensure_actor(self, identity: Identity, now: datetime) -> ActorState:
        """Return the identity's state, creating it on first sight."""

    def lock_actor(self, identity: Identity, now: datetime) -> ActorState:
        """Like `ensure_actor`, but hold the row until the transaction ends."""
        return self.ensure_actor(identity, now)

    @abstractmethod
    def update_actor(self, identity: Identity, **fields) -> ActorState: ...

    @abstractmethod
    def increment_upvotes_given(self, identity: Identity) -> int: ...

    @abstractmethod
    def list_actors(self) -> List[ActorState]: ...

    # Comments --------------------------------------------------------
    @abstractmethod
    def create_comment(
        self,
        *,
        owner: Identity,
        idea_id: int,
        parent_id: Optional[int],
        body: str,
        created_at: datetime,
    ) -> Comment: ...

    @abstractmethod
    def get_comment(self, comment_id: int) -> Optional[Comment]: ...

    @abstractmethod
    def comments_for_idea(self, idea_id: int) -> List[Comment]:
        """All comments under an idea, oldest first."""

    @abstractmethod
    def list_comments(self) -> List[Comment]:
        """Every comment, newest first."""

    @abstractmethod
    def delete_comment(self, comment_id: int) -> List[int]:
        """Delete a comment and its descendants; returns the deleted ids."""

    @abstractmethod
    def increment_comment_tally(self, comment_id: int, delta: int) -> int: ...

    @abstractmethod
    def find_comment_vote(self, voter_key: str, comment_id: int) -> Optional[CommentVote]: ...

    @abstractmethod
    def save_comment_vote(self, vote: CommentVote) -> None: ...

    @abstractmethod
    def find_recent_comment_votes(
        self, *, since: datetime, voter_key: Optional[str] = None, ip: Optional[str] = None
    ) -> List[CommentVote]: ...

    # Subscriptions ---------------------------------------------------
    @abstractmethod
    def create_subscription(
        self, *, email: str, source: str, session_id: Optional[str], subscribed_at: datetime
    ) -> Subscription: ...

    @abstractmethod
    def get_subscription_by_email(self, email: str) -> Optional[Subscription]: ...

    @abstractmethod
    def list_subscriptions(self) -> List[Subscription]: ...


class ContentStore(ABC):
    @abstractmethod
    def transaction(self) -> AbstractContextManager[ContentTransaction]: ...

    @abstractmethod
    def ping(self) -> bool: ...
