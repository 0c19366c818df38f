from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import BackgroundTasks

from ideaboard.core.logging import log_event
from ideaboard.features.integrations.backup import CsvBackupSink
from ideaboard.features.integrations.dispatcher import run_after_response
from ideaboard.features.integrations.newsletter import NewsletterClient
from ideaboard.features.store.base import ContentStore
from ideaboard.models.session import SubscribeRequest, Subscription

logger = logging.getLogger("ideaboard.subscriptions")


class SubscriptionService:
    """Stores the opt-in, then relays it to the newsletter and backup sink after commit."""

    def __init__(
        self,
        store: ContentStore,
        *,
        newsletter: Optional[NewsletterClient] = None,
        backup: Optional[CsvBackupSink] = None,
        time_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.newsletter = newsletter
        self.backup = backup
        self.time_fn = time_fn or (lambda: datetime.now(timezone.utc))

    def subscribe(self, request: SubscribeRequest, tasks: Optional[BackgroundTasks] = None) -> Subscription:
        email = str(request.email).strip().lower()
        with self.store.transaction() as tx:
            subscription = tx.create_subscription(
                email=email,
                source=request.source,
                session_id=request.session_id,
                subscribed_at=self.time_fn(),
            )
        log_event("info", "subscription.created", extra={"source": subscription.source})

        if self.newsletter is not None and self.newsletter.configured:
            run_after_response(tasks, self.relay_to_newsletter, subscription.email)
        if self.backup is not None:
            run_after_response(
                tasks,
                self.backup.append_row,
                [
                    subscription.email,
                    subscription.source,
                    subscription.session_id,
                    subscription.subscribed_at.isoformat(),
                ],
            )
        return subscription

    def relay_to_newsletter(self, email: str) -> str:
        outcome = self.newsletter.subscribe(email)
        log_event("info", "subscription.relayed", event_type="newsletter", extra={"outcome": outcome})
        return outcome
