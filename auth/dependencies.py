"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

Protected routes declare:
    identity: TokenIdentity = Depends(get_current_identity)

and key every query off identity.account_id. Ownership is never taken from
the path, query string or body.

Failure mapping (raised as AppError subclasses, rendered by api/main.py):
  no "Authorization: Bearer <token>" header -> 401 MISSING_TOKEN
  signature valid, exp in the past           -> 403 TOKEN_EXPIRED
  anything else wrong with the token         -> 403 INVALID_TOKEN

Clients treat TOKEN_EXPIRED as "log in again" and never retry with the same
token. Only the header is consulted; there is no cookie or API-key fallback.

On success the identity is also stored on request.state.identity, where the
sliding-refresh middleware in api/main.py picks it up after the handler ran.

Layer rule: no imports from api/ or notes/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import TokenIdentity
from auth.tokens import verify_token
from core.errors import MissingToken


def bearer_token(request: Request) -> str | None:
    """Return the raw token from the Authorization header, or None if absent."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_identity(request: Request) -> TokenIdentity:
    """Require a valid bearer token. Raises MissingToken, TokenExpired or InvalidToken.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: TokenIdentity = Depends(get_current_identity)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise MissingToken()
    identity = verify_token(token)
    request.state.identity = identity
    return identity
