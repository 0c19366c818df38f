from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ideaboard.models.idea import OwnedRecord


class Comment(OwnedRecord):
    id: int
    idea_id: int  # always the root idea, even for nested replies
    parent_id: Optional[int] = None
    body: str
    votes: int = 0
    created_at: datetime


class CommentCreateRequest(BaseModel):
    body: str = Field(min_length=1, max_length=2000)


class CommentNode(BaseModel):
    """A comment as rendered in a thread: one level of replies resolved."""

    id: int
    idea_id: int
    parent_id: Optional[int]
    body: str
    votes: int
    created_at: datetime
    author: str
    reply_count: int = 0
    replies: List["CommentNode"] = Field(default_factory=list)


class BulkDeleteRequest(BaseModel):
    comment_ids: List[int] = Field(min_length=1)
