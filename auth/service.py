"""
auth/service.py -- Launch-data authentication: parse, verify, resolve, issue.

One attempt walks Received -> Parsed -> Verified -> Resolved -> Issued and
stops at the first failure:

  Received -> Parsed     parse_launch_data()           ParseError   -> MalformedInput
  Parsed   -> Verified   verify_signature()            mismatch     -> Unauthenticated
  Verified -> Resolved   IdentityStore find / insert / update   (ConflictError, StorageUnavailable, Timeout)
  Resolved -> Issued     TokenService.issue()          InternalSigningFault

Resolve touches storage exactly once for the read and at most once for the
write: not found -> insert; found and the display fields differ -> update;
found and unchanged -> returned as-is.

Logging: one INFO line per success and one INFO line per rejection, carrying
the reason category only. Raw init data, hashes, and tokens are never logged.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from auth.config import AuthConfig
from auth.errors import ConflictError, IdentityNotFound, MalformedInput, ParseError, Unauthenticated
from auth.launch_data import parse_launch_data, parse_legacy_test_payload, verify_signature
from auth.models import AuthResult, IdentityClaim, LocalIdentity
from auth.tokens import TokenService

logger = logging.getLogger("miniapp.auth")


class IdentityRepository(Protocol):
    """The storage collaborator the orchestrator depends on."""

    def find_by_telegram_id(self, telegram_id: int) -> LocalIdentity | None: ...

    def insert_identity(self, claim: IdentityClaim) -> LocalIdentity: ...

    def update_identity(self, user_id: int, claim: IdentityClaim) -> LocalIdentity: ...


class LaunchAuthenticator:
    """Exchanges Telegram launch data for a session token.

    Stateless apart from its injected collaborators, so one instance serves
    all concurrent requests.
    """

    def __init__(self, config: AuthConfig, store: IdentityRepository, tokens: TokenService) -> None:
        self._config = config
        self._store = store
        self._tokens = tokens
        if config.test_mode:
            logger.warning("Launch-data signature verification is DISABLED (unauthenticated test mode)")

    def authenticate(self, init_data: str) -> AuthResult:
        """Run one authentication attempt. Raises an AuthError subclass on failure."""
        if not init_data:
            logger.info("Auth rejected: empty launch data")
            raise MalformedInput("empty launch data")

        try:
            launch = parse_launch_data(init_data)
        except ParseError as exc:
            logger.info("Auth rejected: malformed launch data (%s)", exc)
            raise MalformedInput(str(exc)) from exc

        if self._config.verify_launch_data:
            if not verify_signature(launch.pairs, self._config.bot_token, launch.signature):
                reason = "missing hash" if not launch.signature else "hash mismatch"
                logger.info("Auth rejected: %s", reason)
                raise Unauthenticated(reason)
        else:
            logger.debug("Skipping launch-data verification (test mode)")

        return self._resolve_and_issue(launch.user)

    def authenticate_legacy_test(self, init_data: str) -> AuthResult:
        """Authenticate the flat user_id=... format. Test mode only."""
        if not self._config.test_mode:
            logger.warning("Legacy test authentication attempted with verification enabled")
            raise Unauthenticated("legacy test authentication is disabled")
        try:
            claim = parse_legacy_test_payload(init_data)
        except ParseError as exc:
            raise MalformedInput(str(exc)) from exc
        return self._resolve_and_issue(claim)

    def _resolve_and_issue(self, claim: IdentityClaim) -> AuthResult:
        identity, created, updated = self._resolve(claim)
        token = self._tokens.issue(identity)
        logger.info(
            "Authenticated user_id=%s telegram_id=%d created=%s updated=%s",
            identity.id,
            identity.telegram_id,
            created,
            updated,
        )
        return AuthResult(token=token, user=identity, created=created, updated=updated)

    def _resolve(self, claim: IdentityClaim) -> tuple[LocalIdentity, bool, bool]:
        existing = self._store.find_by_telegram_id(claim.id)
        if existing is None:
            return self._store.insert_identity(claim), True, False
        if existing.differs_from(claim):
            try:
                return self._store.update_identity(existing.id, claim), False, True
            except IdentityNotFound as exc:
                # Row vanished between read and write.
                raise ConflictError("identity changed during update") from exc
        return existing, False, False


def authenticate_with_retry(attempt: Callable[[str], AuthResult], init_data: str) -> AuthResult:
    """Run attempt(init_data), retrying once if it lost a first-insert race.

    The retry re-reads storage and finds the row the concurrent request
    inserted. A second ConflictError propagates to the caller.
    """
    try:
        return attempt(init_data)
    except ConflictError:
        logger.info("Retrying authentication after identity insert conflict")
        return attempt(init_data)
