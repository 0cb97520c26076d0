"""
auth/config.py -- Immutable configuration injected into the auth services.

AuthConfig is built exactly once at startup and handed to TokenService and
LaunchAuthenticator. It is frozen, so the secrets are read-only for the life
of the process and can be shared across worker threads without locking.

Two constructors, two modes:
  AuthConfig.production(...)  -- requires a non-empty bot token. This is the
      only constructor reachable from Settings (from_settings()).
  AuthConfig.unauthenticated_test_mode(...) -- skips launch-data signature
      checks. Only code can call it; no environment variable or .env entry
      turns it on, so a deployment cannot end up here by leaving
      TELEGRAM_BOT_TOKEN blank.

Layer rule: auth/ may import from core/, never from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from core.config import Settings

DEFAULT_TOKEN_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class AuthConfig:
    signing_secret: str = field(repr=False)
    bot_token: str = field(default="", repr=False)
    token_ttl: timedelta = DEFAULT_TOKEN_TTL
    verify_launch_data: bool = True

    def __post_init__(self) -> None:
        if not self.signing_secret:
            raise ValueError("signing_secret must not be empty")
        if self.token_ttl <= timedelta(0):
            raise ValueError("token_ttl must be positive")
        if self.verify_launch_data and not self.bot_token:
            raise ValueError("bot_token is required when launch-data verification is enabled")

    @property
    def test_mode(self) -> bool:
        return not self.verify_launch_data

    @classmethod
    def production(
        cls,
        signing_secret: str,
        bot_token: str,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ) -> AuthConfig:
        """Config with launch-data verification always on."""
        return cls(signing_secret=signing_secret, bot_token=bot_token, token_ttl=token_ttl)

    @classmethod
    def unauthenticated_test_mode(
        cls,
        signing_secret: str,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ) -> AuthConfig:
        """Config that accepts unsigned launch data. Tests and local demos only."""
        return cls(signing_secret=signing_secret, token_ttl=token_ttl, verify_launch_data=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthConfig:
        """Build the production config. Raises ValueError if TELEGRAM_BOT_TOKEN is unset."""
        if not settings.telegram_bot_token:
            raise ValueError(
                "TELEGRAM_BOT_TOKEN is required. Launch-data verification cannot be disabled by configuration."
            )
        return cls.production(
            signing_secret=settings.jwt_secret,
            bot_token=settings.telegram_bot_token,
            token_ttl=timedelta(seconds=settings.token_expire_seconds),
        )
