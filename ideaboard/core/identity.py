"""
Identity resolution.

Every request resolves to at most one acting identity: an authenticated
account (Bearer JWT) or an anonymous session (X-Session-Id). Accounts always
win over a session header.

Session tokens are capability tokens: whoever presents a token acts as that
session. There is no cryptographic binding between a token and a client, so
a leaked token can be replayed. This is a known spoofing surface.
"""
from __future__ import annotations

import hashlib
import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, List, Literal, Mapping, Optional, Union

from ideaboard.core.auth import bearer_token, verify_account_token
from ideaboard.core.config import Settings
from ideaboard.core.errors import IdentityRequiredError, ValidationError

logger = logging.getLogger("ideaboard.identity")

IdentityKind = Literal["user", "session"]

SESSION_HEADER = "x-session-id"
SHARED_ACCESS_HEADER = "x-shared-access"
MAX_SESSION_ID_LENGTH = 128
UNKNOWN_IP = "unknown"


@dataclass(frozen=True)
class Identity:
    kind: IdentityKind
    id: str

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"

    @classmethod
    def user(cls, user_id: str) -> "Identity":
        return cls(kind="user", id=user_id)

    @classmethod
    def session(cls, session_id: str) -> "Identity":
        return cls(kind="session", id=session_id)


@dataclass(frozen=True)
class RequestContext:
    """What the core needs to know about an incoming request.

    `client_ip` may come from X-Forwarded-For and is only good for bucketing.
    Trust decisions read `peer_ip`, the socket peer after any configured
    proxy rewrite.
    """
    identity: Optional[Identity]
    client_ip: str
    shared_access: bool = False
    peer_ip: str = UNKNOWN_IP

    def require_identity(self) -> Identity:
        if self.identity is None:
            raise IdentityRequiredError("Session ID or account token required")
        return self.identity


def client_ip(headers: Mapping[str, str], peer_host: Optional[str]) -> str:
    """First X-Forwarded-For entry, then the socket peer, then a sentinel."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if peer_host:
        return peer_host
    return UNKNOWN_IP


def resolve_identity(headers: Mapping[str, str], cfg: Settings) -> Optional[Identity]:
    token = bearer_token(headers.get("authorization"))
    if token:
        return Identity.user(verify_account_token(token, cfg))

    session_id = (headers.get(SESSION_HEADER) or "").strip()
    if not session_id:
        return None
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise ValidationError("Session ID is too long")
    return Identity.session(session_id)


def build_request_context(headers: Mapping[str, str], peer_host: Optional[str], cfg: Settings) -> RequestContext:
    shared = (headers.get(SHARED_ACCESS_HEADER) or "").strip().lower() in {"1", "true", "yes"}
    return RequestContext(
        identity=resolve_identity(headers, cfg),
        client_ip=client_ip(headers, peer_host),
        shared_access=shared,
        peer_ip=peer_host or UNKNOWN_IP,
    )


Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class TrustedNetworkPolicy:
    """Set of trusted network ranges (admin access, exempt from vote throttling)."""

    def __init__(self, networks: Iterable[str] = ()):
        self.networks: List[Network] = []
        for raw in networks:
            try:
                self.networks.append(ipaddress.ip_network(raw, strict=False))
            except ValueError:
                logger.warning(f"Ignoring malformed trusted network: {raw!r}")

    @classmethod
    def from_settings(cls, cfg: Settings) -> "TrustedNetworkPolicy":
        return cls(cfg.trusted_networks())

    def is_trusted(self, ip: Optional[str]) -> bool:
        if not ip or ip == UNKNOWN_IP or not self.networks:
            return False
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        # ::ffff:a.b.c.d should match IPv4 ranges
        if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
            addr = addr.ipv4_mapped
        return any(addr.version == net.version and addr in net for net in self.networks)


def display_name(identity: Identity) -> str:
    """Stable public label for an identity; never exposes the session token."""
    digest = hashlib.sha1(identity.key.encode("utf-8")).hexdigest()
    return f"@u_{digest[-6:]}"
