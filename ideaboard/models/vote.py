from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

VoteDirection = Literal["up", "down"]

DIRECTION_DELTA = {"up": 1, "down": -1}


class Vote(BaseModel):
    """One identity's effective vote on one idea."""

    model_config = ConfigDict(frozen=True)

    voter_key: str
    idea_id: int
    vote_type: VoteDirection
    ip_address: str
    created_at: datetime
    cast_at: datetime  # moves forward when the direction is flipped


class CommentVote(BaseModel):
    model_config = ConfigDict(frozen=True)

    voter_key: str
    comment_id: int
    vote_type: VoteDirection
    ip_address: str
    created_at: datetime


class VoteRequest(BaseModel):
    vote_type: VoteDirection


class RewardGrant(BaseModel):
    model_config = ConfigDict(frozen=True)

    idea_id: int
    new_tally: int
    upvotes_given: int


class VoteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    idea_id: int
    new_tally: int
    recorded_direction: VoteDirection
    changed: bool
    reward: Optional[RewardGrant] = None


class CommentVoteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    comment_id: int
    new_tally: int
    duplicate: bool = False
