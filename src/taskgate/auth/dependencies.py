"""FastAPI auth dependencies — the task service's authorization gateway.

Learn: get_current_user runs before every task route (it's attached at
the include_router level in taskgate.api). For each request it:

1. pulls the bearer token out of the Authorization header
2. asks the identity service whether the token is valid (remote call)
3. attaches the verified identity to request.state.identity

Any failure — no header, invalid token, identity service down or slow —
ends the request with 401 before the handler runs. Fail closed: an
unknown answer is a no.
"""

from typing import Optional

import structlog
from fastapi import Depends, Header, Request

from taskgate.clients.identity_client import IdentityClient
from taskgate.errors import Unauthorized, UpstreamUnavailable

logger = structlog.get_logger()


class CurrentIdentity:
    """Represents the authenticated user making the request.

    Learn: This is the unified auth context. All downstream code uses
    this to scope queries by user_id.
    """

    def __init__(self, user_id: int, username: str):
        self.user_id = user_id
        self.username = username

    def __repr__(self) -> str:
        return f"CurrentIdentity(user_id={self.user_id!r}, username={self.username!r})"


def get_identity_client(request: Request) -> IdentityClient:
    """The process-wide identity client built by the app factory."""
    return request.app.state.identity_client


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Invalid authorization header")
    return token


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    client: IdentityClient = Depends(get_identity_client),
) -> CurrentIdentity:
    """Extract and remotely verify the caller's identity (401 on any failure)."""
    token = extract_bearer_token(authorization)

    try:
        verified = await client.verify(token)
    except UpstreamUnavailable as e:
        logger.warning("gateway.verification_unavailable", reason=e.detail)
        raise Unauthorized("Token verification failed")

    if verified is None:
        logger.info("gateway.token_rejected")
        raise Unauthorized("Invalid token")

    identity = CurrentIdentity(user_id=verified.user_id, username=verified.username)
    request.state.identity = identity
    structlog.contextvars.bind_contextvars(user_id=identity.user_id)
    return identity
