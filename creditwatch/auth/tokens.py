"""
JWT Principal Decoding.

HS256 verification of access tokens issued elsewhere. Only decoding lives
here; token issuance belongs to the identity service.
"""

from typing import Any

from jose import JWTError, jwt

from creditwatch.auth.roles import Principal, Role
from creditwatch.config import settings
from creditwatch.exceptions import AuthenticationError

_ROLE_CLAIMS = (
    "role",
    "roles",
    "http://schemas.microsoft.com/ws/2008/06/identity/claims/role",
)


def _collect_roles(payload: dict[str, Any]) -> list[str]:
    roles: list[str] = []
    for claim in _ROLE_CLAIMS:
        value = payload.get(claim)
        if value is None:
            continue
        if isinstance(value, str):
            roles.append(value)
        elif isinstance(value, (list, tuple)):
            roles.extend(str(v) for v in value)
    # Canonical spelling for known roles so group names line up
    return [str(Role.from_str(r) or r) for r in roles]


def decode_token(token: str) -> Principal:
    """
    Decode and validate a JWT access token into a Principal.

    The user id comes from ``sub`` (or legacy ``user_id``).
    Raises AuthenticationError on any failure.
    """
    if not token:
        raise AuthenticationError("Missing token")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise AuthenticationError(f"Invalid token: {e}") from e

    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise AuthenticationError("Token missing subject claim")

    return Principal.of(user_id, _collect_roles(payload), name=payload.get("name"))
