from fastapi import APIRouter, Depends

from ideaboard.api.deps import get_request_context, get_services
from ideaboard.core.identity import RequestContext

router = APIRouter(prefix="/api", tags=["session"])


@router.get("/session")
def get_session(ctx: RequestContext = Depends(get_request_context), services=Depends(get_services)):
    """Return the caller's session, creating one when none (or an unknown one) is sent."""
    identity, state = services.sessions.get_or_create(ctx)
    return {
        "session_id": identity.id if identity.kind == "session" else None,
        "identity_kind": identity.kind,
        "has_submitted": state.has_submitted,
        "upvotes_given": state.upvotes_given,
        "shared_access": state.shared_access,
    }
