"""
Bearer token verification for authenticated accounts.

Accounts present an HS256 JWT whose `sub` claim is the account id. Anonymous
visitors present an opaque `X-Session-Id` instead (see core/identity.py).
"""
from typing import Optional
import logging

import jwt

from ideaboard.core.config import Settings
from ideaboard.core.errors import IdentityRequiredError

logger = logging.getLogger("ideaboard.auth")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def verify_account_token(token: str, cfg: Settings) -> str:
    """
    Verify an account JWT and return its user id.

    Raises:
        IdentityRequiredError: token invalid, expired, or verification disabled
    """
    if not cfg.JWT_SECRET:
        logger.debug("No JWT_SECRET configured, bearer tokens are rejected")
        raise IdentityRequiredError("Account tokens are not accepted by this deployment")

    try:
        payload = jwt.decode(
            token,
            cfg.JWT_SECRET,
            algorithms=[cfg.JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise IdentityRequiredError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise IdentityRequiredError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise IdentityRequiredError("Token has no subject")
    return str(user_id)


def issue_account_token(user_id: str, cfg: Settings, expires_in_seconds: Optional[int] = None) -> str:
    """Mint an account token for an external login flow or a test."""
    import time

    claims = {"sub": user_id, "iat": int(time.time())}
    if expires_in_seconds is not None:
        claims["exp"] = int(time.time()) + expires_in_seconds
    return jwt.encode(claims, cfg.JWT_SECRET, algorithm=cfg.JWT_ALGORITHM)
