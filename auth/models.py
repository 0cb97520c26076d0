"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Dataclasses own
domain shape; the parser, store, and services do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class IdentityClaim:
    """The decoded `user` object from Telegram launch data.

    id is the platform-assigned numeric identifier: stable, unique, never
    reused, and guaranteed by the parser to fit in a signed 64-bit integer.
    """

    id: int
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    language_code: str = ""
    photo_url: str = ""
    allows_write_to_pm: bool = False


@dataclass(frozen=True)
class LaunchData:
    """Decoded launch-data payload. Transient -- never persisted.

    pairs holds every decoded key/value pair except `hash`, in wire order,
    with values exactly as decoded (the verifier signs them verbatim).
    signature is the `hash` value, or None when the payload carried none.
    """

    pairs: tuple[tuple[str, str], ...]
    user: IdentityClaim
    signature: str | None = None

    def get(self, key: str, default: str | None = None) -> str | None:
        """Return the first value for key, e.g. auth_date or query_id."""
        for k, v in self.pairs:
            if k == key:
                return v
        return default


@dataclass
class LocalIdentity:
    """The durable account record for one Telegram user.

    id is the service's own durable key. telegram_id is unique; a record is
    created on first successful authentication and its display fields are
    refreshed whenever a later claim differs.
    """

    telegram_id: int
    id: int | None = None
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    language_code: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    def differs_from(self, claim: IdentityClaim) -> bool:
        """Return True if any stored display field differs from the claim."""
        return (
            self.username != claim.username
            or self.first_name != claim.first_name
            or self.last_name != claim.last_name
            or self.language_code != claim.language_code
        )


@dataclass(frozen=True)
class TokenClaims:
    """Claims recovered from a validated session token."""

    user_id: int
    telegram_id: int
    issued_at: datetime
    not_before: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    token: str
    user: LocalIdentity
    created: bool = False
    updated: bool = False
