"""
API request and response models for Commons REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are kept separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    remember_me asks for a remember cookie with a fresh expiry; without it any
    stored remember token is cleared.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    instance_id: int
    login: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    remember_me: bool = False


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    instance_id: int
    login: str
    last_login: Optional[str] = None
    remembered_until: Optional[str] = None


class AdminInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    login: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
