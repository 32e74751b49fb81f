"""Identity service — registration, login, and token verification.

Learn: this is the only component that holds the signing key.
- register → store a bcrypt digest (never the password) → issue a token
- login → look the user up by username (bound parameter) → check digest
- verify → pure function of the TokenCodec; never reads the store, so a
  deleted user's tokens stay valid until they expire

Unknown username and wrong password raise the same InvalidCredentials.
To keep the two paths close in timing too, an unknown username is still
checked against a dummy digest.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.password import DEFAULT_ROUNDS, hash_password, verify_password
from taskgate.auth.tokens import IdentityClaim, TokenCodec, TokenError
from taskgate.db.models import User
from taskgate.errors import InvalidCredentials, ValidationError

logger = structlog.get_logger()

_DUMMY_HASHES: dict[int, str] = {}


def _dummy_hash(rounds: int) -> str:
    """A digest no password matches, at the same cost as real ones."""
    if rounds not in _DUMMY_HASHES:
        _DUMMY_HASHES[rounds] = hash_password("taskgate-dummy-password", rounds=rounds)
    return _DUMMY_HASHES[rounds]


@dataclass
class AuthResult:
    token: str
    user: User


@dataclass
class VerifyResult:
    valid: bool
    claim: Optional[IdentityClaim] = None
    reason: Optional[str] = None


class IdentityService:
    """Business logic for accounts and tokens."""

    def __init__(
        self,
        db: AsyncSession,
        codec: TokenCodec,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ):
        self.db = db
        self.codec = codec
        self.bcrypt_rounds = bcrypt_rounds

    # ─── Register ────────────────────────────────────────

    async def register(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
    ) -> AuthResult:
        """Create an account and return a token bound to it."""
        if not username or not email or not password:
            raise ValidationError("username, email and password are required")

        q = select(User.id).where(or_(User.username == username, User.email == email))
        result = await self.db.execute(q)
        if result.first():
            raise ValidationError("Username or email already registered")

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration.
            await self.db.rollback()
            raise ValidationError("Username or email already registered")

        logger.info("identity.registered", user_id=user.id, username=user.username)
        return AuthResult(token=self.codec.issue(user.id, user.username), user=user)

    # ─── Login ───────────────────────────────────────────

    async def login(self, username: Optional[str], password: Optional[str]) -> AuthResult:
        """Check credentials and issue a fresh token."""
        if not username or not password:
            raise ValidationError("username and password are required")

        result = await self.db.execute(select(User).where(User.username == username))
        user = result.scalars().first()

        if not user:
            verify_password(password, _dummy_hash(self.bcrypt_rounds))
            logger.info("identity.login_failed", username=username)
            raise InvalidCredentials()

        if not verify_password(password, user.password_hash):
            logger.info("identity.login_failed", username=username)
            raise InvalidCredentials()

        logger.info("identity.login", user_id=user.id)
        return AuthResult(token=self.codec.issue(user.id, user.username), user=user)

    # ─── Verify ──────────────────────────────────────────

    def verify(self, token: Optional[str]) -> VerifyResult:
        """Decode a token. Never raises; failures come back as valid=False."""
        if not token:
            return VerifyResult(valid=False, reason="missing")
        try:
            claim = self.codec.parse(token)
        except TokenError as e:
            logger.info("identity.verify_rejected", reason=e.reason)
            return VerifyResult(valid=False, reason=e.reason)
        return VerifyResult(valid=True, claim=claim)
