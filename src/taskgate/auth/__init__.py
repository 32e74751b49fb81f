"""Authentication and authorization.

Learn: two halves live here.
1. Minting side (identity service) → bcrypt password digests + signed JWTs
2. Checking side (task service) → the authorization gateway, which asks
   the identity service to verify each bearer token over HTTP

The task service never holds the signing key; it trusts only what the
identity service's /api/auth/verify endpoint tells it.
"""
