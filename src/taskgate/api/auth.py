"""Auth API — registration, login, token verification (identity service).

Learn: Routes for the identity side of the protocol:
- POST /auth/register → create an account, get a token
- POST /auth/login → username/password → token
- POST /auth/verify → token → {valid, user}; called by the task service

/verify is unauthenticated on purpose: the token in the body IS the
credential being checked. It answers 401 {valid: false} for any bad
token, so the caller can tell "invalid" apart from "service broken".
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.db.engine import get_db
from taskgate.schemas.auth import (
    AuthResponse,
    LoginRequest,
    RegisterRequest,
    UserRead,
    VerifyRequest,
    VerifyResponse,
)
from taskgate.services.identity_service import IdentityService

router = APIRouter(prefix="/auth")

_REJECTION_MESSAGES = {
    "expired": "Token has expired",
}


def _identity_svc(request: Request, db: AsyncSession = Depends(get_db)) -> IdentityService:
    state = request.app.state
    return IdentityService(db, state.codec, bcrypt_rounds=state.settings.bcrypt_rounds)


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(body: RegisterRequest, svc: IdentityService = Depends(_identity_svc)):
    """Create a new user account."""
    result = await svc.register(body.username, body.email, body.password)
    return AuthResponse(
        message="User registered successfully",
        token=result.token,
        user=UserRead.model_validate(result.user),
    )


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, svc: IdentityService = Depends(_identity_svc)):
    """Login with username and password → token."""
    result = await svc.login(body.username, body.password)
    return AuthResponse(
        message="Login successful",
        token=result.token,
        user=UserRead.model_validate(result.user),
    )


# ─── Verify ──────────────────────────────────────────────


@router.post("/verify", response_model=VerifyResponse)
async def verify(body: VerifyRequest, svc: IdentityService = Depends(_identity_svc)):
    """Check a token and return the identity it carries."""
    result = svc.verify(body.token)
    if not result.valid:
        return JSONResponse(
            status_code=401,
            content={
                "valid": False,
                "error": _REJECTION_MESSAGES.get(result.reason, "Invalid token"),
            },
        )
    return {"valid": True, "user": result.claim.to_dict()}
