"""
ideaboard/features/gate/service.py

Submission gate ("paywall"). The global toggle is an explicit FeatureFlags
value read from a FeatureFlagStore per request, so every instance sharing a
database sees the same setting.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select, update, insert
from sqlalchemy.engine import Engine

from ideaboard.core.database import feature_flags
from ideaboard.core.errors import SubmissionRequiredError
from ideaboard.models.session import ActorState

PAYWALL_FLAG = "paywall_enabled"


@dataclass(frozen=True)
class FeatureFlags:
    paywall_enabled: bool = True


class FeatureFlagStore(ABC):
    @abstractmethod
    def load(self) -> FeatureFlags: ...

    @abstractmethod
    def set_paywall_enabled(self, enabled: bool) -> FeatureFlags: ...


class InMemoryFeatureFlagStore(FeatureFlagStore):
    def __init__(self, paywall_enabled: bool = True):
        self._flags = FeatureFlags(paywall_enabled=paywall_enabled)
        self._lock = threading.Lock()

    def load(self) -> FeatureFlags:
        return self._flags

    def set_paywall_enabled(self, enabled: bool) -> FeatureFlags:
        with self._lock:
            self._flags = FeatureFlags(paywall_enabled=bool(enabled))
            return self._flags


class SqlFeatureFlagStore(FeatureFlagStore):
    """Flags persisted in the feature_flags table; unset rows fall back to defaults."""

    def __init__(
        self,
        engine: Engine,
        *,
        default_paywall_enabled: bool = True,
        time_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.engine = engine
        self.default_paywall_enabled = default_paywall_enabled
        self.time_fn = time_fn or (lambda: datetime.now(timezone.utc))

    def load(self) -> FeatureFlags:
        with self.engine.connect() as conn:
            enabled = conn.execute(
                select(feature_flags.c.enabled).where(feature_flags.c.key == PAYWALL_FLAG)
            ).scalar_one_or_none()
        if enabled is None:
            return FeatureFlags(paywall_enabled=self.default_paywall_enabled)
        return FeatureFlags(paywall_enabled=bool(enabled))

    def set_paywall_enabled(self, enabled: bool) -> FeatureFlags:
        now = self.time_fn()
        with self.engine.begin() as conn:
            result = conn.execute(
                update(feature_flags)
                .where(feature_flags.c.key == PAYWALL_FLAG)
                .values(enabled=bool(enabled), updated_at=now)
            )
            if result.rowcount == 0:
                conn.execute(insert(feature_flags).values(key=PAYWALL_FLAG, enabled=bool(enabled), updated_at=now))
        return FeatureFlags(paywall_enabled=bool(enabled))


def shared_link_bypass(state: Optional[ActorState], shared_header: bool) -> bool:
    """A direct-link arrival, or a grant recorded earlier for this session."""
    return shared_header or (state is not None and state.shared_access)


def can_view_feed(state: Optional[ActorState], flags: FeatureFlags, has_shared_link_bypass: bool = False) -> bool:
    """Pure predicate: may this identity browse the shared feed?"""
    if not flags.paywall_enabled:
        return True
    if has_shared_link_bypass:
        return True
    return state is not None and state.has_submitted


def require_feed_access(state: Optional[ActorState], flags: FeatureFlags, has_shared_link_bypass: bool = False) -> None:
    if not can_view_feed(state, flags, has_shared_link_bypass):
        raise SubmissionRequiredError("Submit an idea to unlock the community feed")
