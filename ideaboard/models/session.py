from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ActorState(BaseModel):
    """
    Gate and reward state of one identity.

    Anonymous sessions and accounts share this shape; the record is keyed by
    the identity key ("session:<token>" or "user:<id>").
    """

    model_config = ConfigDict(frozen=True)

    identity_key: str
    has_submitted: bool = False
    upvotes_given: int = 0
    shared_access: bool = False
    created_at: datetime
    last_activity_at: datetime


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    source: str = "homepage"
    session_id: Optional[str] = None
    subscribed_at: datetime


class SubscribeRequest(BaseModel):
    email: EmailStr
    source: str = Field(default="homepage", max_length=50)
    session_id: Optional[str] = Field(default=None, max_length=128)


class PaywallToggleRequest(BaseModel):
    enabled: bool
