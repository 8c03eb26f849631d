"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request.

- get_current_identity_optional → Identity | None (soft auth)
- get_current_identity → Identity or 401 (hard auth)
- require_role("admin") → Identity with the role, or 403

Websockets can't send an Authorization header from browsers, so
identity_from_websocket also accepts a ?token= query parameter.
"""

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, WebSocket

from gema.auth.jwt import TokenError, verify_token

ROLE_ADMIN = "admin"
ROLE_TEACHER = "teacher"
ROLE_STUDENT = "student"

# "admin" gates accept teachers as well
_ROLE_ALIASES = {
    ROLE_ADMIN: {ROLE_ADMIN, ROLE_TEACHER},
    ROLE_STUDENT: {ROLE_STUDENT},
}


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, resolved once per request.

    Learn: user_id is always a string — numeric token subjects are
    rendered in decimal — because notifications and chat messages are
    addressed by opaque recipient keys, not database primary keys.
    """

    user_id: str
    role: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role in _ROLE_ALIASES[ROLE_ADMIN]

    @property
    def is_student(self) -> bool:
        return self.role == ROLE_STUDENT

    def has_role(self, role: str) -> bool:
        role = role.strip().lower()
        return self.role in _ROLE_ALIASES.get(role, {role})


def _normalize_user_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value) if value >= 0 else None
    if isinstance(value, float):
        return str(int(value)) if value >= 0 and value.is_integer() else None
    if isinstance(value, str):
        return value.strip() or None
    return None


def _normalize_role(value: Any) -> str:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, str) and item.strip():
                return item.strip().lower()
    return ""


def identity_from_claims(claims: dict) -> Optional[Identity]:
    """Build an Identity from decoded token claims (None if no subject)."""
    user_id = None
    for key in ("sub", "user_id", "id"):
        if key in claims:
            user_id = _normalize_user_id(claims[key])
            if user_id:
                break
    if not user_id:
        return None

    role = ""
    for key in ("role", "roles"):
        if key in claims:
            role = _normalize_role(claims[key])
            if role:
                break
    return Identity(user_id=user_id, role=role)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def get_current_identity_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[Identity]:
    """Extract current identity (optional — returns None if no auth).

    A malformed or expired token is still a 401: only the complete
    absence of credentials counts as anonymous.
    """
    if not authorization:
        return None

    token = _bearer_token(authorization)
    if not token:
        raise _unauthorized("invalid authorization header")

    try:
        claims = verify_token(token)
    except TokenError as e:
        raise _unauthorized(str(e))

    identity = identity_from_claims(claims)
    if identity is None:
        raise _unauthorized("invalid token claims")
    return identity


async def get_current_identity(
    identity: Optional[Identity] = Depends(get_current_identity_optional),
) -> Identity:
    """Extract current identity (required — 401 if no auth)."""
    if identity is None:
        raise _unauthorized("authentication required")
    return identity


def require_role(*roles: str):
    """Dependency factory: the caller must hold one of `roles`.

    Usage:
        @router.post("/", dependencies=[Depends(require_role("admin"))])
    """
    allowed = [r.strip().lower() for r in roles if r.strip()]

    async def _check(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not any(identity.has_role(role) for role in allowed):
            raise HTTPException(status_code=403, detail="insufficient permissions")
        return identity

    return _check


def identity_from_websocket(websocket: WebSocket) -> Optional[Identity]:
    """Resolve the caller of a websocket upgrade, or None.

    Never raises — the websocket handler decides which close code to use.
    """
    token = _bearer_token(websocket.headers.get("authorization"))
    if not token:
        token = (websocket.query_params.get("token") or "").strip() or None
    if not token:
        return None
    try:
        claims = verify_token(token)
    except TokenError:
        return None
    return identity_from_claims(claims)
