from __future__ import annotations

from typing import Optional

from ideaboard.core.identity import Identity
from ideaboard.features.store.base import ContentTransaction
from ideaboard.models.vote import RewardGrant


class RewardMechanism:
    """Every `batch_size` upvotes given to others earns one bonus vote.

    The bonus lands on the giver's lowest-tally idea (earliest submission
    wins ties). It is applied with increment_tally directly, so it never
    counts as a given upvote itself.
    """

    def __init__(self, batch_size: int = 3):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size

    def on_upvote_given(self, tx: ContentTransaction, identity: Identity) -> Optional[RewardGrant]:
        given = tx.increment_upvotes_given(identity)
        if given <= 0 or given % self.batch_size != 0:
            return None
        owned = tx.ideas_owned_by(identity)
        if not owned:
            return None
        target = min(owned, key=lambda idea: (idea.votes, idea.submitted_at, idea.id))
        new_tally = tx.increment_tally(target.id, 1)
        return RewardGrant(idea_id=target.id, new_tally=new_tally, upvotes_given=given)
