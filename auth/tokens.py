"""
auth/tokens.py -- Session token issue and validation.

Security design decisions:
  JWT: python-jose, signed HS256 with AuthConfig.signing_secret. Tokens carry
       the durable user id, the Telegram id, iat, nbf and exp. They are
       stateless: no session table, no revocation list. The fixed expiry
       window (24h by default) is the only mitigation for a leaked token.

  Algorithm pinning: validate() passes an explicit HMAC-only algorithm list
       to jwt.decode(). A token whose header declares "none", RS256, ES256 or
       anything else is refused before its signature is looked at.

  Errors: validate() raises TokenValidationError for every failure. The
       access dependency turns that into one constant 401 so callers cannot
       tell an expired token from a forged one.

Layer rule: no imports from api/. Config arrives through AuthConfig.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError

from auth.config import AuthConfig
from auth.errors import InternalSigningFault, TokenValidationError
from auth.models import LocalIdentity, TokenClaims

logger = logging.getLogger("miniapp.auth.tokens")

_ALGORITHM = "HS256"
_ACCEPTED_ALGORITHMS = ["HS256", "HS384", "HS512"]

_DECODE_OPTIONS = {
    "require_iat": True,
    "require_nbf": True,
    "require_exp": True,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and validates bearer session tokens.

    Usage:
        tokens = TokenService(AuthConfig.production(secret, bot_token))
        token = tokens.issue(identity)
        claims = tokens.validate(token)

    clock is injectable so tests can issue tokens "in the past". validate()
    always checks against the real clock via python-jose.
    """

    def __init__(self, config: AuthConfig, clock: Callable[[], datetime] | None = None) -> None:
        self._config = config
        self._clock = clock or _utcnow

    def issue(self, identity: LocalIdentity) -> str:
        """Return a signed token for a stored identity."""
        if identity.id is None:
            raise InternalSigningFault("cannot issue a token for an unsaved identity")
        now = self._clock()
        payload = {
            "sub": str(identity.id),
            "user_id": identity.id,
            "telegram_id": identity.telegram_id,
            "iat": now,
            "nbf": now,
            "exp": now + self._config.token_ttl,
        }
        try:
            return jwt.encode(payload, self._config.signing_secret, algorithm=_ALGORITHM)
        except JOSEError as exc:
            logger.exception("Token signing failed for user_id=%s", identity.id)
            raise InternalSigningFault("token signing failed") from exc

    def validate(self, token: str) -> TokenClaims:
        """Verify signature, algorithm and time window; return the claims."""
        if not token:
            raise TokenValidationError("empty token")
        try:
            payload = jwt.decode(
                token,
                self._config.signing_secret,
                algorithms=_ACCEPTED_ALGORITHMS,
                options=_DECODE_OPTIONS,
            )
        except ExpiredSignatureError as exc:
            raise TokenValidationError("token expired") from exc
        except JOSEError as exc:
            raise TokenValidationError("token rejected") from exc

        user_id = payload.get("user_id")
        telegram_id = payload.get("telegram_id")
        if not _is_int(user_id) or not _is_int(telegram_id):
            raise TokenValidationError("token is missing identity claims")
        if payload.get("sub") != str(user_id):
            raise TokenValidationError("token subject does not match user_id")

        try:
            return TokenClaims(
                user_id=user_id,
                telegram_id=telegram_id,
                issued_at=_from_timestamp(payload["iat"]),
                not_before=_from_timestamp(payload["nbf"]),
                expires_at=_from_timestamp(payload["exp"]),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise TokenValidationError("token has invalid time claims") from exc


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
