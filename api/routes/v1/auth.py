"""
api/routes/v1/auth.py -- Telegram launch-data login and the caller's profile.

Routes:
  POST /api/v1/auth/telegram       -- exchange init data for a bearer token
  POST /api/v1/auth/telegram/test  -- legacy flat-parameter login (test mode only)
  GET  /api/v1/user/profile        -- stored identity of the token holder (requires auth)

Security:
  Login endpoints are rate-limited to 10 requests/minute per IP.
  Cache-Control: no-store on every response that carries a token.
  Errors are AuthError subclasses rendered by api/main.py with a constant
  message per class; nothing here formats internal detail into a response.

Deadline:
  The login attempt runs in a worker thread under asyncio.wait_for(). If the
  request deadline passes first, the caller receives Timeout (504). The
  worker thread finishes its storage call in the background; its result is
  discarded.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AuthResponse, TelegramAuthRequest, UserResponse
from auth.dependencies import get_current_user_id
from auth.errors import Timeout
from auth.models import AuthResult
from auth.service import LaunchAuthenticator, authenticate_with_retry
from auth.store import IdentityStore

logger = logging.getLogger("miniapp.api.auth")

# Auth policy:
# - POST /api/v1/auth/telegram:       public -- this is the login endpoint
# - POST /api/v1/auth/telegram/test:  public, 404 unless the app runs in test mode
# - GET  /api/v1/user/profile:        requires bearer token (get_current_user_id)
router = APIRouter()


async def _run_with_deadline(request: Request, func, init_data: str) -> AuthResult:
    timeout = request.app.state.request_timeout_seconds
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(authenticate_with_retry, func, init_data),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("Authentication exceeded the %.1fs request deadline", timeout)
        raise Timeout("authentication deadline exceeded") from exc


def _token_response(request: Request, result: AuthResult) -> JSONResponse:
    expires_in = int(request.app.state.auth_config.token_ttl.total_seconds())
    resp = JSONResponse(
        status_code=200,
        content=AuthResponse(
            token=result.token,
            expires_in=expires_in,
            user=UserResponse.from_identity(result.user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit("10/minute")  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/telegram", response_model=AuthResponse)
async def telegram_auth(request: Request, body: TelegramAuthRequest) -> JSONResponse:
    """Validate Telegram launch data and return a session token plus the stored user.

    Empty init_data is rejected as malformed_input before any HMAC work.
    A first-login insert race is retried once; the retry finds the row the
    concurrent request created.
    """
    authenticator: LaunchAuthenticator = request.app.state.authenticator
    result = await _run_with_deadline(request, authenticator.authenticate, body.init_data)
    return _token_response(request, result)


@limiter.limit("10/minute")
@router.post("/auth/telegram/test", response_model=AuthResponse, include_in_schema=False)
async def telegram_auth_test(request: Request, body: TelegramAuthRequest) -> JSONResponse:
    """Legacy flat-format login (user_id=..&username=..). Exists only in test mode."""
    if not request.app.state.auth_config.test_mode:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Not found."})
    authenticator: LaunchAuthenticator = request.app.state.authenticator
    result = await _run_with_deadline(request, authenticator.authenticate_legacy_test, body.init_data)
    return _token_response(request, result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/user/profile", response_model=UserResponse)
def profile(request: Request, user_id: int = Depends(get_current_user_id)) -> UserResponse:
    """Return the stored identity for the token holder."""
    store: IdentityStore = request.app.state.identity_store
    identity = store.get_by_id(user_id)
    if identity is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return UserResponse.from_identity(identity)
