"""
API request and response models for the mini-app auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import LocalIdentity

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class TelegramAuthRequest(BaseModel):
    """Request body for POST /api/v1/auth/telegram.

    init_data defaults to "" so a missing field reaches the orchestrator and
    is rejected as malformed_input (400), the same as an empty string.
    """

    init_data: str = Field(default="", max_length=8192)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a LocalIdentity."""

    model_config = ConfigDict(frozen=True)

    id: int
    telegram_id: int
    username: str
    first_name: str
    last_name: str
    language_code: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: LocalIdentity) -> "UserResponse":
        return cls(
            id=identity.id,
            telegram_id=identity.telegram_id,
            username=identity.username,
            first_name=identity.first_name,
            last_name=identity.last_name,
            language_code=identity.language_code,
            created_at=identity.created_at,
            updated_at=identity.updated_at,
        )


class AuthResponse(BaseModel):
    """Response for POST /api/v1/auth/telegram."""

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class ErrorDetail(BaseModel):
    """Structured error detail returned on all non-2xx responses."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for all error responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
