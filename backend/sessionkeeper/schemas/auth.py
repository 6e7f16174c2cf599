"""Authentication schemas."""
from pydantic import BaseModel, EmailStr, Field


class SignUpRequest(BaseModel):
    """User registration request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class SignInRequest(BaseModel):
    """User sign-in request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class CsrfTokenResponse(BaseModel):
    """Sign-in and refresh response; tokens travel as cookies."""

    success: bool = True
    csrf_token: str


class SessionStatusResponse(BaseModel):
    """Session validation result."""

    valid: bool
    owner_id: str
    expires_in: int  # seconds until the access token expires


class ProfileResponse(BaseModel):
    """User info response."""

    id: str
    email: str

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
    success: bool = True
