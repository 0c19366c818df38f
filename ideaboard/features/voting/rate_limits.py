"""
Sliding-window vote limits, evaluated against the stored vote history
(every accepted tally change, flips included).

Checks run inside the caller's store transaction, so the window a vote is
judged against cannot change before that vote is written.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from ideaboard.core.errors import RateLimitError
from ideaboard.core.identity import UNKNOWN_IP

# (since, voter_key, ip) -> timestamps of matching votes, newest first
RecentLookup = Callable[..., List[datetime]]


def _elapsed(now: datetime, then: datetime) -> float:
    return (now - then).total_seconds()


def check_identity_cooldown(
    recent: RecentLookup,
    *,
    voter_key: str,
    now: datetime,
    cooldown_seconds: float,
    message: Optional[str] = None,
) -> None:
    if cooldown_seconds <= 0:
        return
    stamps = recent(since=now - timedelta(seconds=cooldown_seconds), voter_key=voter_key)
    if stamps:
        remaining = cooldown_seconds - _elapsed(now, stamps[0])
        kwargs = {"message": message} if message else {}
        raise RateLimitError(remaining_seconds=remaining, **kwargs)


def check_ip_windows(
    recent: RecentLookup,
    *,
    ip: str,
    now: datetime,
    windows: Sequence[Tuple[float, int]],
    message: Optional[str] = None,
) -> None:
    if ip == UNKNOWN_IP:
        return
    for window_seconds, max_votes in windows:
        if max_votes <= 0:
            continue
        stamps = recent(since=now - timedelta(seconds=window_seconds), ip=ip)
        if len(stamps) >= max_votes:
            # Wait until the max_votes-th newest vote leaves the window.
            remaining = window_seconds - _elapsed(now, stamps[max_votes - 1])
            kwargs = {"message": message} if message else {}
            raise RateLimitError(remaining_seconds=remaining, **kwargs)
