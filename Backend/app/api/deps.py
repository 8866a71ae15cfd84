# app/api/deps.py
"""
Request dependencies - bearer token gate for HTTP routes.
"""
from typing import Optional

from fastapi import Depends, Request

from app.core.exceptions import AccessError, AuthenticationError, MissingTokenError
from app.core.logging import log
from app.lib.identity import UserIdentity


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


async def require_user(request: Request) -> UserIdentity:
    """Reject the request with 401 unless it carries a valid bearer token."""
    token = bearer_token(request)
    if token is None:
        raise AccessError(401, "Unauthorized", MissingTokenError().message)

    try:
        identity = await request.app.state.resolver.authenticate(token)
    except AuthenticationError as e:
        log("AUTH", f"{request.method} {request.url.path} rejected: {e.message}")
        raise AccessError(401, "Unauthorized", e.message)

    request.state.user = identity
    return identity


async def optional_user(request: Request) -> Optional[UserIdentity]:
    """Same as require_user, but anonymous requests pass through as None."""
    token = bearer_token(request)
    if token is None:
        return None
    identity = await request.app.state.resolver.resolve(token)
    if identity is not None:
        request.state.user = identity
    return identity


async def require_admin(user: UserIdentity = Depends(require_user)) -> UserIdentity:
    if not user.is_admin:
        raise AccessError(403, "Forbidden", "Admin access required")
    return user
