"""
auth/errors.py -- Error taxonomy for the authentication core.

Only AuthError subclasses cross the API boundary. Each class carries a
constant public message; the exception's own args may hold diagnostic detail
for logs but are never rendered to the caller. Unauthenticated in particular
must look identical whether the signature, the token, or the header failed,
so callers cannot use it as an oracle.

ParseError, TokenValidationError and IdentityNotFound are internal: the
orchestrator and the access dependency translate them into the public
classes below.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors surfaced to API callers."""

    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication failed."
    retryable: bool = False


class MalformedInput(AuthError):
    """Launch data absent, unparseable, missing `user`, or non-numeric id."""

    code = "malformed_input"
    status_code = 400
    message = "Launch data is missing or malformed."


class Unauthenticated(AuthError):
    """Bad signature, or a missing/invalid/expired bearer token."""

    code = "unauthenticated"
    status_code = 401
    message = "Authentication required."


class ConflictError(AuthError):
    """Concurrent first-time insert for the same platform identifier."""

    code = "conflict"
    status_code = 409
    message = "Concurrent update conflict. Retry the request."
    retryable = True


class StorageUnavailable(AuthError):
    code = "storage_unavailable"
    status_code = 503
    message = "Storage is temporarily unavailable."
    retryable = True


class Timeout(StorageUnavailable):
    code = "timeout"
    status_code = 504
    message = "The request deadline was exceeded."


class InternalSigningFault(AuthError):
    """Token signing backend failure. Logged; never exposed in detail."""

    code = "internal_error"
    status_code = 500
    message = "An unexpected error occurred."


# ---------------------------------------------------------------------------
# Internal errors (never rendered directly)
# ---------------------------------------------------------------------------


class ParseError(ValueError):
    """Raised by the launch-data parser."""


class TokenValidationError(Exception):
    """Raised by TokenService.validate() for any rejected token."""


class IdentityNotFound(LookupError):
    """Raised by IdentityStore.update_identity() when the key does not exist."""
