"""
ideaboard/models/idea.py
Idea records and request bodies. Ideas and comments share the owner rule:
exactly one of user_id / session_id is set.
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ideaboard.core.identity import Identity

_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


class OwnedRecord(BaseModel):
    """Content owned by exactly one identity."""

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    session_id: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_owner(self):
        if (self.user_id is None) == (self.session_id is None):
            raise ValueError("exactly one of user_id or session_id must be set")
        return self

    @property
    def owner(self) -> Identity:
        if self.user_id is not None:
            return Identity.user(self.user_id)
        return Identity.session(self.session_id)

    def is_owned_by(self, identity: Optional[Identity]) -> bool:
        return identity is not None and self.owner == identity


class Idea(OwnedRecord):
    id: int
    body: str
    title: Optional[str] = None
    category: Optional[str] = "other"
    tools: Optional[str] = None
    link_url: Optional[str] = None
    votes: int = 0
    ai_grade: Optional[str] = None
    is_test: bool = False
    submitted_at: datetime


def is_valid_link(url: Optional[str]) -> bool:
    if not url or not url.strip():
        return True
    url = url.strip()
    return "." in url and (
        url.startswith("http://")
        or url.startswith("https://")
        or url.startswith("www.")
        or bool(_DOMAIN_RE.match(url))
    )


class IdeaCreateRequest(BaseModel):
    """Body of POST /api/ideas"""

    body: str = Field(min_length=1, max_length=5000, description="The use case itself")
    title: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    tools: Optional[str] = Field(default=None, max_length=200)
    link_url: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("link_url")
    @classmethod
    def _check_link(cls, value: Optional[str]) -> Optional[str]:
        if not is_valid_link(value):
            raise ValueError("Please enter a valid URL (e.g., https://example.com, www.example.com, or example.com)")
        return value.strip() if value and value.strip() else None


class IdeaUpdateRequest(BaseModel):
    """Admin edit of an idea; omitted fields are left alone."""

    body: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    title: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    tools: Optional[str] = Field(default=None, max_length=200)
    link_url: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("link_url")
    @classmethod
    def _check_link(cls, value: Optional[str]) -> Optional[str]:
        if not is_valid_link(value):
            raise ValueError("Please enter a valid URL")
        return value


class TallyOverrideRequest(BaseModel):
    votes: int = Field(ge=0)
