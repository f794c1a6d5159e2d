import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from storefront.core.errors import ForbiddenError, UnauthenticatedError
from storefront.models.enums import Role

logger = logging.getLogger(__name__)

STAFF_ROLES = (Role.ADMIN, Role.SPECIALIST)


@dataclass(frozen=True)
class Identity:
    id: str
    role: Role
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class AuthorizationGuard(Protocol):
    def verify(self, credential: Optional[str]) -> Identity:
        """Resolve a credential to an identity or raise UnauthenticatedError."""
        ...


class StaticTokenGuard:
    """Looks bearer tokens up in a fixed table.

    Token issuance lives outside this service; this guard only answers
    "who holds this token".
    """

    def __init__(self, tokens: Optional[Dict[str, Identity]] = None):
        self.tokens = dict(tokens or {})

    @classmethod
    def from_spec(cls, spec: str) -> "StaticTokenGuard":
        """Build from "token:user_id:ROLE[:email]" entries separated by commas"""
        tokens = {}
        for entry in filter(None, (part.strip() for part in spec.split(","))):
            fields = entry.split(":")
            if len(fields) < 3:
                logger.warning(f"Ignoring malformed API token entry ({len(fields)} fields)")
                continue
            token, user_id, role = fields[0], fields[1], fields[2]
            email = fields[3] if len(fields) > 3 else None
            tokens[token] = Identity(id=user_id, role=Role(role.upper()), email=email)
        return cls(tokens)

    def verify(self, credential: Optional[str]) -> Identity:
        if not credential:
            raise UnauthenticatedError()
        identity = self.tokens.get(credential)
        if identity is None:
            raise UnauthenticatedError("Invalid token")
        return identity


def require_role(identity: Identity, *roles: Role) -> Identity:
    if identity.role not in roles:
        if roles == (Role.ADMIN,):
            raise ForbiddenError("Admin access required")
        raise ForbiddenError()
    return identity
