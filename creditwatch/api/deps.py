"""
FastAPI dependencies for API routes.

- get_services: the ServiceRegistry attached to the app
- get_principal: Bearer-token authentication
- require_role: role gate for operator endpoints
"""

from fastapi import Depends, HTTPException, Request

from creditwatch.auth.roles import Principal, Role
from creditwatch.auth.tokens import decode_token
from creditwatch.exceptions import AuthenticationError
from creditwatch.registry import ServiceRegistry


def get_services(request: Request) -> ServiceRegistry:
    return request.app.state.services


def authenticate(token: str | None) -> Principal:
    """Turn a raw token into a Principal or raise 401."""
    try:
        return decode_token(token or "")
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=e.message) from e


def get_principal(request: Request) -> Principal:
    """Extract the principal from ``Authorization: Bearer <JWT>``."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    principal = authenticate(token)
    request.state.user_id = principal.user_id
    return principal


def require_role(*roles: Role):
    """Dependency factory: principal must hold at least one of ``roles``."""

    def _check(principal: Principal = Depends(get_principal)) -> Principal:
        if not any(principal.has_role(role) for role in roles):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return principal

    return _check
