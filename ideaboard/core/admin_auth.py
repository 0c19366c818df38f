"""
Admin authentication.

A request is an admin request when either:
- it carries X-Admin-Key equal to ADMIN_KEY, or
- its socket peer falls inside one of the TRUSTED_NETWORKS ranges.

X-Forwarded-For is never trusted here. Behind a proxy, list the proxy in
TRUSTED_PROXIES so uvicorn's ProxyHeadersMiddleware rewrites the peer first.

Both come from configuration; no address is hardcoded.
"""
import hashlib
import hmac
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import Request

from ideaboard.core.config import Settings, settings as default_settings
from ideaboard.core.errors import AppError, PermissionError
from ideaboard.core.identity import UNKNOWN_IP, TrustedNetworkPolicy, client_ip

ADMIN_KEY_HEADER = "x-admin-key"


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["admin_key", "trusted_network"]
    actor_id: str  # "key:<hash>" or "ip:<address>"
    client_ip: str


class AdminAuthUnconfiguredError(AppError):
    code = "admin_auth_unconfigured"
    status_code = 503


def _app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or default_settings


def _trusted_policy(request: Request, cfg: Settings) -> TrustedNetworkPolicy:
    policy = getattr(request.app.state, "trusted", None)
    return policy if policy is not None else TrustedNetworkPolicy.from_settings(cfg)


def peer_ip(request: Request) -> str:
    return request.client.host if request.client and request.client.host else UNKNOWN_IP


def verify_admin_key(request: Request, expected_key: Optional[str]) -> Optional[AdminActor]:
    if not expected_key:
        return None
    header_key = request.headers.get(ADMIN_KEY_HEADER, "").strip()
    if not header_key or not hmac.compare_digest(header_key.encode(), expected_key.encode()):
        return None
    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    ip = client_ip(request.headers, request.client.host if request.client else None)
    return AdminActor(actor_type="admin_key", actor_id=f"key:{key_hash}", client_ip=ip)


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """Authenticate an admin from the request; returns None instead of raising."""
    cfg = _app_settings(request)
    actor = verify_admin_key(request, cfg.ADMIN_KEY)
    if actor:
        return actor
    ip = peer_ip(request)
    if _trusted_policy(request, cfg).is_trusted(ip):
        return AdminActor(actor_type="trusted_network", actor_id=f"ip:{ip}", client_ip=ip)
    return None


def is_admin_request(request: Request) -> bool:
    return get_admin_actor(request) is not None


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.get("/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            pass
    """
    actor = get_admin_actor(request)
    if actor:
        return actor

    cfg = _app_settings(request)
    if not cfg.ADMIN_KEY and not _trusted_policy(request, cfg).networks:
        raise AdminAuthUnconfiguredError("Admin authentication not configured; set ADMIN_KEY or TRUSTED_NETWORKS")
    raise PermissionError("Access denied", code="admin_unauthorized")
