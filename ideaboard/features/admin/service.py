"""
ideaboard/features/admin/service.py

Trusted overrides and reporting. Nothing here goes through the vote engine:
callers are already authorized by require_admin.
"""

from __future__ import annotations

import csv
import io
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ideaboard.core.errors import NotFoundError, ValidationError
from ideaboard.core.identity import TrustedNetworkPolicy
from ideaboard.core.logging import log_event
from ideaboard.features.gate.service import FeatureFlags, FeatureFlagStore
from ideaboard.features.store.base import ContentStore, FeedOrder
from ideaboard.models.comment import Comment
from ideaboard.models.idea import Idea, IdeaUpdateRequest
from ideaboard.models.session import Subscription
from ideaboard.models.vote import Vote

EXPORT_HEADER = ("Email", "Source", "SessionId", "IdeaText", "Category", "Tools", "Votes", "SubmittedAt")
TREND_SAMPLE_POINTS = (0.1, 0.25, 0.5, 0.75, 0.9, 1.0)
FORMULA_PREFIXES = ("=", "+", "-", "@")


def _csv_safe(value):
    """Neutralize cells a spreadsheet would evaluate as a formula."""
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def _write_row(writer, row) -> None:
    writer.writerow([_csv_safe(cell) for cell in row])


def _owner_ref(idea: Idea) -> str:
    """Session id for anonymous ideas, identity key for account-owned ones."""
    return idea.session_id if idea.session_id is not None else idea.owner.key


class AdminService:
    def __init__(
        self,
        store: ContentStore,
        flag_store: FeatureFlagStore,
        *,
        trusted: Optional[TrustedNetworkPolicy] = None,
        time_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.flag_store = flag_store
        self.trusted = trusted or TrustedNetworkPolicy()
        self.time_fn = time_fn or (lambda: datetime.now(timezone.utc))

    # Overrides ---------------------------------------------------------
    def set_tally(self, idea_id: int, value: int) -> int:
        if value < 0:
            raise ValidationError("Votes must be a non-negative number")
        with self.store.transaction() as tx:
            if tx.set_tally(idea_id, value) is None:
                raise NotFoundError(f"Idea {idea_id} not found")
        log_event("info", "admin.set_tally", idea_id=idea_id, extra={"votes": value})
        return value

    def set_paywall_enabled(self, enabled: bool) -> FeatureFlags:
        flags = self.flag_store.set_paywall_enabled(enabled)
        log_event("info", "admin.paywall_toggled", extra={"enabled": flags.paywall_enabled})
        return flags

    def paywall_status(self) -> FeatureFlags:
        return self.flag_store.load()

    def update_idea(self, idea_id: int, request: IdeaUpdateRequest) -> Idea:
        fields = request.model_dump(exclude_unset=True)
        with self.store.transaction() as tx:
            idea = tx.update_idea(idea_id, **fields)
            if idea is None:
                raise NotFoundError(f"Idea {idea_id} not found")
        log_event("info", "admin.idea_updated", idea_id=idea_id, extra={"fields": sorted(fields)})
        return idea

    def delete_idea(self, idea_id: int) -> None:
        with self.store.transaction() as tx:
            if not tx.delete_idea(idea_id):
                raise NotFoundError(f"Idea {idea_id} not found")
        log_event("info", "admin.idea_deleted", idea_id=idea_id)

    def delete_duplicates(self) -> List[int]:
        """Remove ideas whose normalized body repeats; the higher tally survives."""
        doomed: List[int] = []
        with self.store.transaction() as tx:
            keep: Dict[str, Idea] = {}
            for idea in tx.ideas_sorted_by("votes"):
                key = idea.body.strip().lower()
                if not key:
                    continue
                # Tally order means the first copy seen is the one to keep.
                if key in keep:
                    doomed.append(idea.id)
                else:
                    keep[key] = idea
            for idea_id in doomed:
                tx.delete_idea(idea_id)
        log_event("info", "admin.duplicates_deleted", extra={"deleted": len(doomed)})
        return sorted(doomed)

    # Reporting ---------------------------------------------------------
    def _upvotes_given(self, votes: Iterable[Vote], owned_ids: Dict[str, set]) -> Dict[str, int]:
        given: Dict[str, int] = Counter()
        for vote in votes:
            if vote.vote_type != "up" or self.trusted.is_trusted(vote.ip_address):
                continue
            if vote.idea_id in owned_ids.get(vote.voter_key, ()):
                continue
            given[vote.voter_key] += 1
        return given

    def ideas_with_upvotes_given(self, order: FeedOrder = "recent") -> List[Tuple[Idea, int]]:
        """Every idea with the number of upvotes its submitter gave to others."""
        with self.store.transaction() as tx:
            ideas = tx.ideas_sorted_by(order)
            owners = {idea.owner.key for idea in ideas}
            votes = tx.votes_cast_by(owners)
        owned_ids: Dict[str, set] = {}
        for idea in ideas:
            owned_ids.setdefault(idea.owner.key, set()).add(idea.id)
        given = self._upvotes_given(votes, owned_ids)
        return [(idea, given.get(idea.owner.key, 0)) for idea in ideas]

    def upvote_trends(self) -> List[dict]:
        rows = self.ideas_with_upvotes_given("votes")
        points = []
        for fraction in TREND_SAMPLE_POINTS:
            index = int(len(rows) * fraction) - 1
            if index < 0:
                continue
            window = rows[: index + 1]
            total = sum(count for _, count in window)
            points.append(
                {
                    "date": window[-1][0].submitted_at.date().isoformat(),
                    "average_upvotes": round(total / len(window), 1),
                    "total_users": len(window),
                    "total_upvotes": total,
                }
            )
        return points

    def stats(self) -> dict:
        with self.store.transaction() as tx:
            ideas = tx.ideas_sorted_by("votes")
            subscriptions = tx.list_subscriptions()
        categories = Counter(idea.category or "other" for idea in ideas)
        return {
            "total_ideas": len(ideas),
            "total_subscribers": len(subscriptions),
            "category_counts": dict(categories),
        }

    def user_stats(self) -> dict:
        with self.store.transaction() as tx:
            actors = tx.list_actors()
        total_users = len(actors)
        active = [a for a in actors if a.upvotes_given > 0]
        total_given = sum(a.upvotes_given for a in actors)
        return {
            "total_users": total_users,
            "active_voters": len(active),
            "total_upvotes_given": total_given,
            "average_upvotes_per_user": total_given / total_users if total_users else 0,
            "average_upvotes_per_active_voter": total_given / len(active) if active else 0,
        }

    def subscribers(self) -> List[Subscription]:
        with self.store.transaction() as tx:
            return tx.list_subscriptions()

    def export_csv(self) -> str:
        """Ideas joined to subscriptions by session, then subscribers with no idea."""
        with self.store.transaction() as tx:
            ideas = tx.ideas_sorted_by("recent")
            subscriptions = tx.list_subscriptions()

        by_session: Dict[str, Subscription] = {}
        for sub in subscriptions:
            if sub.session_id and sub.session_id not in by_session:
                by_session[sub.session_id] = sub

        out = io.StringIO()
        writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(EXPORT_HEADER)
        linked = set()
        for idea in ideas:
            ref = _owner_ref(idea)
            sub = by_session.get(idea.session_id) if idea.session_id else None
            if sub is not None:
                linked.add(sub.id)
            _write_row(
                writer,
                [
                    sub.email if sub else "No email",
                    (sub.source or "homepage") if sub else "idea_only",
                    ref,
                    idea.body,
                    idea.category or "other",
                    idea.tools or "",
                    idea.votes,
                    idea.submitted_at.isoformat(),
                ]
            )
        for sub in subscriptions:
            if sub.id in linked:
                continue
            _write_row(
                writer,
                [
                    sub.email,
                    sub.source or "homepage",
                    sub.session_id or "no-session",
                    "No idea submitted",
                    "",
                    "",
                    "",
                    sub.subscribed_at.isoformat(),
                ]
            )
        return out.getvalue()

    # Comment moderation ------------------------------------------------
    def list_comments(self) -> List[Comment]:
        with self.store.transaction() as tx:
            return tx.list_comments()

    def delete_comment(self, comment_id: int) -> List[int]:
        with self.store.transaction() as tx:
            deleted = tx.delete_comment(comment_id)
        if not deleted:
            raise NotFoundError(f"Comment {comment_id} not found")
        log_event("info", "admin.comment_deleted", comment_id=comment_id, extra={"deleted": len(deleted)})
        return deleted

    def bulk_delete_comments(self, comment_ids: Iterable[int]) -> List[int]:
        deleted: List[int] = []
        with self.store.transaction() as tx:
            for comment_id in comment_ids:
                deleted.extend(tx.delete_comment(comment_id))
        log_event("info", "admin.comments_bulk_deleted", extra={"deleted": len(deleted)})
        return sorted(set(deleted))
