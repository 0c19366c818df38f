"""
ideaboard/features/store/sql.py

SQLAlchemy Core persistence for ideas, votes, comments, actor state and
subscriptions. One `transaction()` is one database transaction
(`engine.begin()`); SQLite engines take the write lock up front, so
concurrent vote transactions queue instead of interleaving.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from ideaboard.core.database import (
    actor_states,
    check_connection,
    comment_votes,
    comments,
    ideas,
    subscriptions,
    vote_events,
    votes,
)
from ideaboard.core.errors import ConflictError, NotFoundError
from ideaboard.core.identity import Identity
from ideaboard.features.store.base import (
    IDEA_EDITABLE_FIELDS,
    ContentStore,
    ContentTransaction,
    FeedFilters,
    FeedOrder,
)
from ideaboard.models.comment import Comment
from ideaboard.models.idea import Idea
from ideaboard.models.session import ActorState, Subscription
from ideaboard.models.vote import CommentVote, Vote


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _owner_values(owner: Identity) -> dict:
    if owner.kind == "user":
        return {"user_id": owner.id, "session_id": None}
    return {"user_id": None, "session_id": owner.id}


def _owner_clause(table, identity: Identity):
    if identity.kind == "user":
        return table.c.user_id == identity.id
    return table.c.session_id == identity.id


def _tag_clause(column, wanted: Optional[str]):
    if wanted is None:
        return None
    if wanted.lower() == "other":
        return or_(column.is_(None), func.lower(column) == "other")
    return func.lower(column) == wanted.lower()


def _idea(row) -> Idea:
    data = dict(row._mapping)
    data["submitted_at"] = _utc(data["submitted_at"])
    return Idea(**data)


def _comment(row) -> Comment:
    data = dict(row._mapping)
    data["created_at"] = _utc(data["created_at"])
    return Comment(**data)


def _vote(row) -> Vote:
    return Vote(
        voter_key=row.voter_key,
        idea_id=row.idea_id,
        vote_type=row.vote_type,
        ip_address=row.ip_address,
        created_at=_utc(row.created_at),
        cast_at=_utc(row.cast_at),
    )


def _vote_event(row) -> Vote:
    return Vote(
        voter_key=row.voter_key,
        idea_id=row.idea_id,
        vote_type=row.vote_type,
        ip_address=row.ip_address,
        created_at=_utc(row.cast_at),
        cast_at=_utc(row.cast_at),
    )


def _comment_vote(row) -> CommentVote:
    return CommentVote(
        voter_key=row.voter_key,
        comment_id=row.comment_id,
        vote_type=row.vote_type,
        ip_address=row.ip_address,
        created_at=_utc(row.created_at),
    )


def _actor(row) -> ActorState:
    return ActorState(
        identity_key=row.identity_key,
        has_submitted=bool(row.has_submitted),
        upvotes_given=row.upvotes_given,
        shared_access=bool(row.shared_access),
        created_at=_utc(row.created_at),
        last_activity_at=_utc(row.last_activity_at),
    )


def _subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        email=row.email,
        source=row.source,
        session_id=row.session_id,
        subscribed_at=_utc(row.subscribed_at),
    )


class SqlTransaction(ContentTransaction):
    def __init__(self, conn: Connection):
        self.conn = conn

    # Ideas -----------------------------------------------------------
    def create_idea(self, *, owner, body, submitted_at, title=None, category=None, tools=None, link_url=None, is_test=False):
        result = self.conn.execute(
            insert(ideas).values(
                body=body,
                title=title,
                category=category or "other",
                tools=tools,
                link_url=link_url,
                votes=0,
                is_test=is_test,
                submitted_at=submitted_at,
                **_owner_values(owner),
            )
        )
        return self.get_idea(result.inserted_primary_key[0])

    def get_idea(self, idea_id, *, for_update=False):
        stmt = select(ideas).where(ideas.c.id == idea_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = self.conn.execute(stmt).first()
        return _idea(row) if row else None

    def ideas_sorted_by(self, order: FeedOrder, filters: Optional[FeedFilters] = None):
        filters = filters or FeedFilters()
        stmt = select(ideas)
        for clause in (
            _tag_clause(ideas.c.category, filters.category_filter),
            _tag_clause(ideas.c.tools, filters.tool_filter),
        ):
            if clause is not None:
                stmt = stmt.where(clause)
        if order == "recent":
            stmt = stmt.order_by(ideas.c.submitted_at.desc(), ideas.c.id.desc())
        else:
            stmt = stmt.order_by(ideas.c.votes.desc(), ideas.c.id.asc())
        return [_idea(row) for row in self.conn.execute(stmt).all()]

    def ideas_owned_by(self, identity):
        rows = self.conn.execute(
            select(ideas)
            .where(_owner_clause(ideas, identity))
            .order_by(ideas.c.submitted_at.asc(), ideas.c.id.asc())
        ).all()
        return [_idea(row) for row in rows]

    def update_idea(self, idea_id, **fields):
        values = {k: v for k, v in fields.items() if k in IDEA_EDITABLE_FIELDS}
        if values:
            self.conn.execute(update(ideas).where(ideas.c.id == idea_id).values(**values))
        return self.get_idea(idea_id)

    def delete_idea(self, idea_id):
        if self.get_idea(idea_id) is None:
            return False
        comment_ids = self.conn.execute(
            select(comments.c.id).where(comments.c.idea_id == idea_id)
        ).scalars().all()
        self._drop_comments(comment_ids)
        self.conn.execute(delete(votes).where(votes.c.idea_id == idea_id))
        self.conn.execute(delete(ideas).where(ideas.c.id == idea_id))
        return True

    def increment_tally(self, idea_id, delta):
        result = self.conn.execute(
            update(ideas).where(ideas.c.id == idea_id).values(votes=ideas.c.votes + delta)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Idea {idea_id} not found")
        return self.conn.execute(select(ideas.c.votes).where(ideas.c.id == idea_id)).scalar_one()

    def set_tally(self, idea_id, value):
        result = self.conn.execute(update(ideas).where(ideas.c.id == idea_id).values(votes=value))
        return value if result.rowcount else None

    # Votes -----------------------------------------------------------
    def find_vote(self, voter_key, idea_id):
        row = self.conn.execute(
            select(votes).where(and_(votes.c.voter_key == voter_key, votes.c.idea_id == idea_id))
        ).first()
        return _vote(row) if row else None

    def save_vote(self, vote):
        row = {
            "vote_type": vote.vote_type,
            "ip_address": vote.ip_address,
            "created_at": vote.created_at,
            "cast_at": vote.cast_at,
        }
        result = self.conn.execute(
            update(votes)
            .where(and_(votes.c.voter_key == vote.voter_key, votes.c.idea_id == vote.idea_id))
            .values(**row)
        )
        if result.rowcount:
            self._append_event(vote)
            return
        try:
            with self.conn.begin_nested():
                self.conn.execute(insert(votes).values(voter_key=vote.voter_key, idea_id=vote.idea_id, **row))
        except IntegrityError as exc:
            raise ConflictError("A vote from this identity was recorded concurrently") from exc
        self._append_event(vote)

    def _append_event(self, vote):
        self.conn.execute(
            insert(vote_events).values(
                voter_key=vote.voter_key,
                idea_id=vote.idea_id,
                vote_type=vote.vote_type,
                ip_address=vote.ip_address,
                cast_at=vote.cast_at,
            )
        )

    def find_recent_votes(self, *, since, voter_key=None, ip=None):
        stmt = select(vote_events).where(vote_events.c.cast_at >= since)
        if voter_key is not None:
            stmt = stmt.where(vote_events.c.voter_key == voter_key)
        if ip is not None:
            stmt = stmt.where(vote_events.c.ip_address == ip)
        stmt = stmt.order_by(vote_events.c.cast_at.desc(), vote_events.c.id.desc())
        return [_vote_event(row) for row in self.conn.execute(stmt).all()]

    def votes_cast_by(self, voter_keys: Iterable[str]):
        keys = list(voter_keys)
        if not keys:
            return []
        rows = self.conn.execute(select(votes).where(votes.c.voter_key.in_(keys))).all()
        return [_vote(row) for row in rows]

    # Actors ----------------------------------------------------------
    def get_actor(self, identity):
        row = self.conn.execute(
            select(actor_states).where(actor_states.c.identity_key == identity.key)
        ).first()
        return _actor(row) if row else None

    def ensure_actor(self, identity, now):
        existing = self.get_actor(identity)
        if existing is not None:
            return existing
        try:
            with self.conn.begin_nested():
                self.conn.execute(
                    insert(actor_states).values(
                        identity_key=identity.key,
                        has_submitted=False,
                        upvotes_given=0,
                        shared_access=False,
                        created_at=now,
                        last_activity_at=now,
                    )
                )
        except IntegrityError:
            # Another transaction created it first.
            pass
        return self.get_actor(identity)

    def lock_actor(self, identity, now):
        self.ensure_actor(identity, now)
        row = self.conn.execute(
            select(actor_states).where(actor_states.c.identity_key == identity.key).with_for_update()
        ).one()
        return _actor(row)

    def update_actor(self, identity, **fields):
        result = self.conn.execute(
            update(actor_states).where(actor_states.c.identity_key == identity.key).values(**fields)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"No state for {identity.key}")
        return self.get_actor(identity)

    def increment_upvotes_given(self, identity):
        result = self.conn.execute(
            update(actor_states)
            .where(actor_states.c.identity_key == identity.key)
            .values(upvotes_given=actor_states.c.upvotes_given + 1)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"No state for {identity.key}")
        return self.conn.execute(
            select(actor_states.c.upvotes_given).where(actor_states.c.identity_key == identity.key)
        ).scalar_one()

    def list_actors(self):
        rows = self.conn.execute(select(actor_states).order_by(actor_states.c.created_at)).all()
        return [_actor(row) for row in rows]

    # Comments --------------------------------------------------------
    def create_comment(self, *, owner, idea_id, parent_id, body, created_at):
        result = self.conn.execute(
            insert(comments).values(
                idea_id=idea_id,
                parent_id=parent_id,
                body=body,
                votes=0,
                created_at=created_at,
                **_owner_values(owner),
            )
        )
        return self.get_comment(result.inserted_primary_key[0])

    def get_comment(self, comment_id):
        row = self.conn.execute(select(comments).where(comments.c.id == comment_id)).first()
        return _comment(row) if row else None

    def comments_for_idea(self, idea_id):
        rows = self.conn.execute(
            select(comments)
            .where(comments.c.idea_id == idea_id)
            .order_by(comments.c.created_at.asc(), comments.c.id.asc())
        ).all()
        return [_comment(row) for row in rows]

    def list_comments(self):
        rows = self.conn.execute(
            select(comments).order_by(comments.c.created_at.desc(), comments.c.id.desc())
        ).all()
        return [_comment(row) for row in rows]

    def delete_comment(self, comment_id):
        if self.get_comment(comment_id) is None:
            return []
        doomed = [comment_id]
        frontier = [comment_id]
        while frontier:
            children = self.conn.execute(
                select(comments.c.id).where(comments.c.parent_id.in_(frontier))
            ).scalars().all()
            doomed.extend(children)
            frontier = list(children)
        self._drop_comments(doomed)
        return sorted(doomed)

    def _drop_comments(self, comment_ids: List[int]) -> None:
        if not comment_ids:
            return
        self.conn.execute(delete(comment_votes).where(comment_votes.c.comment_id.in_(comment_ids)))
        # Children before parents keeps the parent_id foreign key satisfied.
        for cid in sorted(comment_ids, reverse=True):
            self.conn.execute(delete(comments).where(comments.c.id == cid))

    def increment_comment_tally(self, comment_id, delta):
        result = self.conn.execute(
            update(comments).where(comments.c.id == comment_id).values(votes=comments.c.votes + delta)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Comment {comment_id} not found")
        return self.conn.execute(select(comments.c.votes).where(comments.c.id == comment_id)).scalar_one()

    def find_comment_vote(self, voter_key, comment_id):
        row = self.conn.execute(
            select(comment_votes).where(
                and_(comment_votes.c.voter_key == voter_key, comment_votes.c.comment_id == comment_id)
            )
        ).first()
        return _comment_vote(row) if row else None

    def save_comment_vote(self, vote):
        try:
            with self.conn.begin_nested():
                self.conn.execute(
                    insert(comment_votes).values(
                        voter_key=vote.voter_key,
                        comment_id=vote.comment_id,
                        vote_type=vote.vote_type,
                        ip_address=vote.ip_address,
                        created_at=vote.created_at,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError("Comment vote already recorded") from exc

    def find_recent_comment_votes(self, *, since, voter_key=None, ip=None):
        stmt = select(comment_votes).where(comment_votes.c.created_at >= since)
        if voter_key is not None:
            stmt = stmt.where(comment_votes.c.voter_key == voter_key)
        if ip is not None:
            stmt = stmt.where(comment_votes.c.ip_address == ip)
        rows = self.conn.execute(stmt.order_by(comment_votes.c.created_at.desc())).all()
        return [_comment_vote(row) for row in rows]

    # Subscriptions ---------------------------------------------------
    def create_subscription(self, *, email, source, session_id, subscribed_at):
        if self.get_subscription_by_email(email) is not None:
            raise ConflictError("Email already subscribed")
        try:
            with self.conn.begin_nested():
                result = self.conn.execute(
                    insert(subscriptions).values(
                        email=email,
                        source=source,
                        session_id=session_id,
                        subscribed_at=subscribed_at,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError("Email already subscribed") from exc
        row = self.conn.execute(
            select(subscriptions).where(subscriptions.c.id == result.inserted_primary_key[0])
        ).first()
        return _subscription(row)

    def get_subscription_by_email(self, email):
        row = self.conn.execute(
            select(subscriptions).where(func.lower(subscriptions.c.email) == email.lower())
        ).first()
        return _subscription(row) if row else None

    def list_subscriptions(self):
        rows = self.conn.execute(select(subscriptions).order_by(subscriptions.c.id)).all()
        return [_subscription(row) for row in rows]


class SqlContentStore(ContentStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def transaction(self) -> Iterator[ContentTransaction]:
        with self.engine.begin() as conn:
            yield SqlTransaction(conn)

    def ping(self) -> bool:
        return check_connection(self.engine)
