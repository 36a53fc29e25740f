"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Header, Request
from starlette.concurrency import run_in_threadpool

from tabletop_scribe.errors import unauthorized
from tabletop_scribe.services.auth import AuthenticatedUser, extract_bearer_token

if TYPE_CHECKING:
    from tabletop_scribe.containers import AppContainer


def get_container(request: Request) -> AppContainer:
    """Return the container attached to the running app."""
    return request.app.state.container


async def require_user(
    request: Request, authorization: str | None = Header(default=None)
) -> AuthenticatedUser:
    """Verify the bearer access token and return its user, or answer 401."""
    token = extract_bearer_token(authorization)
    if token is None:
        raise unauthorized()
    container = get_container(request)
    user = await run_in_threadpool(container.token_verifier.verify, token)
    if user is None:
        raise unauthorized("Invalid or expired token")
    return user
