"""
Tests for token decoding and roles.
"""

import time

import pytest
from jose import jwt

from creditwatch.auth.roles import Principal, Role
from creditwatch.auth.tokens import decode_token
from creditwatch.config import settings
from creditwatch.exceptions import AuthenticationError

MS_ROLE_CLAIM = "http://schemas.microsoft.com/ws/2008/06/identity/claims/role"


def _encode(claims: dict, secret: str = None) -> str:
    return jwt.encode(claims, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Admin", Role.ADMIN),
        ("manager", Role.MANAGER),
        ("credit_officer", Role.CREDIT_OFFICER),
        ("CREDITOFFICER", Role.CREDIT_OFFICER),
        ("Auditor", None),
    ],
)
def test_role_from_str(raw, expected):
    assert Role.from_str(raw) is expected


def test_principal_has_role():
    principal = Principal.of(7, [Role.MANAGER, "Auditor", ""])
    assert principal.user_id == "7"
    assert principal.has_role(Role.MANAGER)
    assert principal.has_role("Auditor")
    assert not principal.has_role(Role.ADMIN)
    assert principal.roles == frozenset({"Manager", "Auditor"})


def test_decode_single_role_claim():
    principal = decode_token(_encode({"sub": "u1", "role": "credit_officer", "name": "Ana"}))
    assert principal.user_id == "u1"
    assert principal.roles == frozenset({"CreditOfficer"})
    assert principal.name == "Ana"


def test_decode_collects_every_role_claim():
    token = _encode({
        "user_id": "u2",
        "roles": ["Manager", "Auditor"],
        MS_ROLE_CLAIM: "admin",
    })
    principal = decode_token(token)
    assert principal.user_id == "u2"
    assert principal.roles == frozenset({"Manager", "Auditor", "Admin"})


@pytest.mark.parametrize(
    "token",
    [
        "",
        "garbage",
        _encode({"sub": "u1"}, secret="other-secret"),
        _encode({"role": "Admin"}),
        _encode({"sub": "u1", "exp": int(time.time()) - 60}),
    ],
)
def test_decode_rejects(token):
    with pytest.raises(AuthenticationError):
        decode_token(token)
