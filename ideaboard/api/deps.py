"""Request-scoped dependencies: identity context and the services wired in create_app."""

from fastapi import Request

from ideaboard.core.identity import RequestContext, build_request_context


def get_request_context(request: Request) -> RequestContext:
    ctx = build_request_context(
        request.headers,
        request.client.host if request.client else None,
        request.app.state.settings,
    )
    request.state.identity = ctx.identity
    return ctx


def get_services(request: Request):
    return request.app.state.services
