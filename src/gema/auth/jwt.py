"""JWT access tokens (PyJWT, HMAC).

Learn: This service doesn't log anyone in. Tokens come from the
platform's account service; we only verify them. create_access_token
exists so the CLI and the test suite can mint tokens with the same
secret.

Claims we care about:
- sub (or user_id / id) — numeric or string, see identity_from_claims
- role / roles — optional
- type — anything but "refresh" is accepted; refresh tokens from the
  account service must never authorise an API call
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from gema.config import settings

REFRESH_TOKEN_TYPE = "refresh"


class TokenError(Exception):
    """Raised when a bearer token can't be trusted."""


def create_access_token(
    user_id: str,
    role: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Mint a signed access token for `user_id`."""
    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)

    claims: dict[str, Any] = {
        "sub": str(user_id),
        "type": "access",
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    if role:
        claims["role"] = role
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Check signature and expiry, return the claims.

    Raises TokenError on any failure.
    """
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            # Upstream issuers use numeric subjects too.
            options={"verify_sub": False},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if claims.get("type") == REFRESH_TOKEN_TYPE:
        raise TokenError("Refresh tokens cannot be used for API access")
    return claims
