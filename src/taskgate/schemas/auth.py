"""Pydantic schemas for the identity service.

Learn: the password digest never appears in any response schema —
UserRead is the only shape a user record leaves the service in.
"""

from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class VerifyRequest(BaseModel):
    token: str


class UserRead(BaseModel):
    id: int
    username: str
    email: str

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    message: str
    token: str
    user: UserRead


class ClaimRead(BaseModel):
    """Identity claim as seen by other services."""
    user_id: int
    username: str
    issued_at: str
    expires_at: Optional[str] = None


class VerifyResponse(BaseModel):
    valid: bool
    user: Optional[ClaimRead] = None
    error: Optional[str] = None
