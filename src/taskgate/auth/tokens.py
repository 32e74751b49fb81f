"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
The token carries the identity claim itself, signed with a key only the
identity service knows:

    sub       user id (as a string, per RFC 7519)
    username  login name at issuance time
    iat       issued-at
    exp       expiry (omitted when the ttl is zero → never expires)
    jti       random id, so two tokens minted in the same second differ

There is no revocation list. Once issued, a token is valid until its exp,
even if the user is deleted.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt


class TokenError(Exception):
    """Raised when token verification fails."""

    reason = "invalid"


class TokenExpired(TokenError):
    reason = "expired"


class TokenInvalidSignature(TokenError):
    reason = "invalid_signature"


class TokenMalformed(TokenError):
    reason = "malformed"


@dataclass(frozen=True)
class IdentityClaim:
    """The decoded payload of a valid token."""

    user_id: int
    username: str
    issued_at: datetime
    expires_at: Optional[datetime] = None
    token_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_timestamp(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TokenCodec:
    """Issues and parses signed identity claims with one process-wide key."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = ttl
        self._clock = clock or _utcnow

    def issue(
        self,
        user_id: int,
        username: str,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """Create a signed token for a user.

        ttl overrides the codec default; a zero or absent ttl produces a
        token without an exp claim.
        """
        ttl = self.ttl if ttl is None else ttl
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "username": username,
            "iat": now,
            "jti": uuid.uuid4().hex,
        }
        if ttl:
            payload["exp"] = now + ttl
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def parse(self, token: str) -> IdentityClaim:
        """Verify and decode a token.

        Returns the claim on success.
        Raises TokenExpired, TokenInvalidSignature or TokenMalformed.

        Expiry is judged against the codec's own clock, the same one
        issue() stamps iat and exp from.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={
                    "require": ["sub", "iat"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidSignatureError:
            raise TokenInvalidSignature("Token signature mismatch")
        except jwt.InvalidTokenError as e:
            raise TokenMalformed(f"Malformed token: {e}")

        try:
            user_id = int(payload["sub"])
            username = payload["username"]
        except (KeyError, TypeError, ValueError):
            raise TokenMalformed("Malformed token: bad identity claims")
        if not isinstance(username, str):
            raise TokenMalformed("Malformed token: bad identity claims")

        iat = payload["iat"]
        exp = payload.get("exp")
        if not _is_timestamp(iat) or (exp is not None and not _is_timestamp(exp)):
            raise TokenMalformed("Malformed token: bad timestamp claims")
        if exp is not None and exp <= self._clock().timestamp():
            raise TokenExpired("Token has expired")

        return IdentityClaim(
            user_id=user_id,
            username=username,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None,
            token_id=payload.get("jti"),
        )
