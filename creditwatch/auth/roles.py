"""
Roles and authenticated principals.

Defines:
- Role names carried in token claims (Admin, Manager, CreditOfficer)
- Principal: the already-authenticated identity behind a live connection
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterable, Optional


class Role(StrEnum):
    """Roles entitled to receive credit alerts."""

    ADMIN = "Admin"
    MANAGER = "Manager"
    CREDIT_OFFICER = "CreditOfficer"

    @classmethod
    def from_str(cls, value: str) -> Optional["Role"]:
        """Convert a claim value to a Role, case-insensitive. Unknown roles → None."""
        normalized = value.replace("_", "").replace("-", "").lower()
        for role in cls:
            if role.value.lower() == normalized:
                return role
        return None


@dataclass(frozen=True)
class Principal:
    """
    Authenticated identity of a connection.

    Roles are kept as claim strings: a role this service does not know
    still gets its own group, it just never matches a severity target.
    """

    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    name: Optional[str] = None

    @classmethod
    def of(cls, user_id: str, roles: Iterable[str] = (), name: Optional[str] = None) -> "Principal":
        return cls(user_id=str(user_id), roles=frozenset(str(r) for r in roles if r), name=name)

    def has_role(self, role: Role | str) -> bool:
        return str(role) in self.roles
