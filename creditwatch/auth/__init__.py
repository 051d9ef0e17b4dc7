from creditwatch.auth.roles import Principal, Role
from creditwatch.auth.tokens import decode_token

__all__ = ["Principal", "Role", "decode_token"]
