from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from ideaboard.core.config import Settings


@dataclass(frozen=True)
class VotingPolicy:
    """Tunables for idea and comment voting."""

    downvote_threshold: int = 100
    reward_batch_size: int = 3
    vote_cooldown_seconds: float = 5.0
    # (window_seconds, max_votes) pairs applied per client IP
    ip_windows: Tuple[Tuple[float, int], ...] = field(default=((10.0, 2), (60.0, 5)))
    comment_vote_cooldown_seconds: float = 2.0

    @classmethod
    def from_settings(cls, cfg: Settings) -> "VotingPolicy":
        return cls(
            downvote_threshold=cfg.DOWNVOTE_THRESHOLD,
            reward_batch_size=cfg.REWARD_BATCH_SIZE,
            vote_cooldown_seconds=cfg.VOTE_COOLDOWN_SECONDS,
            ip_windows=tuple(cfg.ip_vote_windows()),
            comment_vote_cooldown_seconds=cfg.COMMENT_VOTE_COOLDOWN_SECONDS,
        )
