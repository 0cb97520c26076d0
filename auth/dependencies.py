"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token access.

Only one auth method exists: Authorization: Bearer <jwt>, where the JWT was
issued by POST /api/v1/auth/telegram.

require_identity() validates the token and stores the durable user id and
Telegram id on request.state before any route code runs. Every failure
raises the same Unauthenticated error; nothing is attached to request.state
unless validation fully succeeds.

get_current_user_id() is the thin variant for routes that only need the key.

Layer rule: may import from fastapi (Request) because this module is part of
the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import TokenValidationError, Unauthenticated
from auth.models import TokenClaims
from auth.tokens import TokenService

logger = logging.getLogger("miniapp.auth.access")

_BEARER_PREFIX = "bearer "


def parse_bearer_token(authorization_header: str | None) -> str | None:
    """Extract the token from an Authorization header value.

    Returns None when the header is missing, uses another scheme, or carries
    an empty token. The scheme name is case-insensitive.
    """
    if not authorization_header:
        return None
    raw = authorization_header.strip()
    if raw[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = raw[len(_BEARER_PREFIX) :].strip()
    return token or None


def require_identity(request: Request) -> TokenClaims:
    """Require a valid bearer token. Raises Unauthenticated otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: TokenClaims = Depends(require_identity)): ...
    """
    token = parse_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise Unauthenticated("missing bearer token")

    tokens: TokenService = request.app.state.token_service
    try:
        claims = tokens.validate(token)
    except TokenValidationError as exc:
        logger.debug("Bearer token rejected: %s", exc)
        raise Unauthenticated("invalid bearer token") from exc

    request.state.user_id = claims.user_id
    request.state.telegram_id = claims.telegram_id
    return claims


def get_current_user_id(request: Request) -> int:
    """Return the durable key of the authenticated caller."""
    return require_identity(request).user_id
