"""Auth tests — token round trip, claim parsing, role gating."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from gema.auth.dependencies import Identity, identity_from_claims
from gema.auth.jwt import TokenError, create_access_token, verify_token
from gema.config import settings


def test_token_round_trip():
    token = create_access_token("42", role="teacher")
    claims = verify_token(token)
    assert claims["sub"] == "42"
    assert claims["role"] == "teacher"
    assert claims["type"] == "access"


def test_expired_token_rejected():
    token = jwt.encode(
        {"sub": "42", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenError, match="expired"):
        verify_token(token)


def test_refresh_token_rejected():
    token = jwt.encode(
        {"sub": "42", "type": "refresh"}, settings.jwt_secret, algorithm=settings.jwt_algorithm
    )
    with pytest.raises(TokenError, match="Refresh"):
        verify_token(token)


def test_wrong_secret_rejected():
    token = jwt.encode({"sub": "42"}, "some-other-secret", algorithm="HS256")
    with pytest.raises(TokenError):
        verify_token(token)


def test_numeric_user_id_accepted():
    token = jwt.encode({"user_id": 42}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    identity = identity_from_claims(verify_token(token))
    assert identity == Identity(user_id="42", role="")
    assert identity_from_claims({"sub": 42}) == Identity(user_id="42", role="")


@pytest.mark.parametrize("claims,expected", [
    ({"sub": "abc", "role": "Teacher"}, Identity("abc", "teacher")),
    ({"user_id": 7, "roles": ["", " Student "]}, Identity("7", "student")),
    ({"sub": "", "id": "fallback"}, Identity("fallback", "")),
    ({"sub": -1, "user_id": "u-1"}, Identity("u-1", "")),
])
def test_identity_from_claims(claims, expected):
    assert identity_from_claims(claims) == expected


@pytest.mark.parametrize("claims", [
    {},
    {"sub": ""},
    {"sub": -3},
    {"sub": True},
    {"sub": None, "role": "admin"},
])
def test_identity_from_claims_without_subject(claims):
    assert identity_from_claims(claims) is None


def test_identity_role_helpers():
    assert Identity("1", "admin").is_admin
    assert Identity("1", "teacher").is_admin
    assert Identity("1", "teacher").has_role("admin")
    assert not Identity("1", "student").has_role("admin")
    assert Identity("1", "student").is_student
    assert not Identity("1", "").is_admin


@pytest.mark.asyncio
async def test_token_without_subject_is_401(client):
    token = jwt.encode({"role": "admin"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    r = await client.get("/api/v2/notifications", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["error"] == "invalid token claims"


@pytest.mark.asyncio
async def test_non_bearer_scheme_is_401(client):
    r = await client.get("/api/v2/notifications", headers={"Authorization": "Basic abc"})
    assert r.status_code == 401
