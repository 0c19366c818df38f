from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from ideaboard.core.identity import Identity, RequestContext
from ideaboard.features.store.base import ContentStore
from ideaboard.models.session import ActorState


def new_session_token() -> str:
    return secrets.token_urlsafe(16)


class SessionService:
    """Lazily creates actor state for sessions and accounts."""

    def __init__(self, store: ContentStore, *, time_fn: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.time_fn = time_fn or (lambda: datetime.now(timezone.utc))

    def get_or_create(self, ctx: RequestContext) -> Tuple[Identity, ActorState]:
        """Resolve the caller's state, minting a session token when none was sent."""
        identity = ctx.identity or Identity.session(new_session_token())
        now = self.time_fn()
        with self.store.transaction() as tx:
            tx.ensure_actor(identity, now)
            state = tx.update_actor(identity, last_activity_at=now)
        return identity, state

    def get_state(self, identity: Identity) -> Optional[ActorState]:
        with self.store.transaction() as tx:
            return tx.get_actor(identity)
