"""Representative authentication schemas."""

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Credentials submitted to the rep login endpoint."""

    username: str = Field(..., max_length=200, description="Representative login name")
    password: str = Field(..., max_length=200, description="Plain-text password")


class RepProfile(BaseModel):
    """Public view of an authenticated representative."""

    id: str
    username: str
    email: str
    full_name: str
    role: str

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    """Session material returned after a successful login."""

    token: str = Field(..., description="Bearer token for subsequent requests")
    csrf_token: str = Field(..., description="Token to echo in the X-CSRF-Token header")
    mfa_required: bool = Field(False, description="True if a second factor must be verified")
    rep: RepProfile


class MFAVerifyRequest(BaseModel):
    """Second-factor code typed by the representative."""

    code: str = Field(..., min_length=4, max_length=16)


class CSRFTokenResponse(BaseModel):
    csrf_token: str
