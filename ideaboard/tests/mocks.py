import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx

from ideaboard.core.identity import UNKNOWN_IP, Identity, RequestContext
from ideaboard.models.idea import IdeaCreateRequest

TEST_ADMIN_KEY = "test-admin-key"
TEST_JWT_SECRET = "test-jwt-secret-for-ideaboard-0123456789"

AI_IDEA = "Use ChatGPT to summarize my weekly meeting notes"


class FakeClock:
    """Deterministic UTC clock; tests move it forward explicitly."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


def make_ctx(
    ident: str,
    *,
    ip: str = "203.0.113.10",
    kind: str = "session",
    shared: bool = False,
    peer: str = UNKNOWN_IP,
) -> RequestContext:
    """`ip` is the forwarded client address; `peer` is the socket peer trust is judged on."""
    identity = Identity.user(ident) if kind == "user" else Identity.session(ident)
    return RequestContext(identity=identity, client_ip=ip, shared_access=shared, peer_ip=peer)


def submit_idea(services, ident: str, body: str = AI_IDEA, **fields):
    """Submit through the service layer, which also opens the gate for `ident`."""
    return services.ideas.submit(make_ctx(ident), IdeaCreateRequest(body=body, **fields))


def session_headers(session_id: str, ip: str = "203.0.113.10", **extra) -> dict:
    headers = {"X-Session-Id": session_id, "X-Forwarded-For": ip}
    headers.update(extra)
    return headers


class FakeMessage:
    def __init__(self, content: Optional[str]):
        self.content = content


class FakeChoice:
    def __init__(self, content: Optional[str]):
        self.message = FakeMessage(content)


class FakeCompletion:
    def __init__(self, content: Optional[str]):
        self.choices = [FakeChoice(content)]


class FakeCompletions:
    def __init__(self, content: Optional[str] = None, error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls: List[dict] = []

    def create(self, *args, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return FakeCompletion(self.content)


class FakeChat:
    def __init__(self, completions: FakeCompletions):
        self.completions = completions


class FakeGroq:
    """Stands in for groq.Groq; answers every completion with a fixed payload."""

    def __init__(self, score=None, *, content: Optional[str] = None, error: Optional[Exception] = None):
        if content is None and score is not None:
            content = json.dumps({"score": score, "reasoning": "test"})
        self.chat = FakeChat(FakeCompletions(content=content, error=error))

    @property
    def calls(self) -> List[dict]:
        return self.chat.completions.calls


def newsletter_transport(status_code: int = 201, payload: Optional[dict] = None, seen: Optional[list] = None):
    """httpx.MockTransport answering the newsletter subscriptions endpoint."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload or {"data": {"status": "active"}})

    return httpx.MockTransport(handler)
