"""
Principal - the "who is calling" value for each core operation.

Every workflow method takes a Principal as its first argument. It is built
from the *stored* user, not from token claims, so a role change or deletion
takes effect on the very next request even while old access tokens remain
valid.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tracker.auth.capabilities import Capability, get_capabilities
from tracker.core.models import Role, User
from tracker.core.results import Unauthenticated
from tracker.storage.base import Collections, MetadataStorage


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller of a core operation.

    Usage in workflows:
        async def approve(self, principal: Principal, request_id: int):
            if not principal.can(Capability.ROLE_REVIEW):
                raise Forbidden()
    """

    user_id: int
    username: str
    email: str
    role: Role

    _capabilities: frozenset[Capability] = field(default=frozenset(), repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_capabilities", frozenset(get_capabilities(self.role)))

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def capabilities(self) -> frozenset[Capability]:
        return self._capabilities

    def can(self, capability: Capability | str) -> bool:
        """
        Check if the caller has a capability.

        Usage:
            if principal.can("role.review"):
                ...
        """
        if isinstance(capability, str):
            try:
                capability = Capability(capability)
            except ValueError:
                return False
        return capability in self._capabilities

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(
            user_id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
        )


# =============================================================================
# Principal Resolution
# =============================================================================


async def load_principal(user_id: int, metadata: MetadataStorage) -> Principal:
    """
    Resolve the principal for an authenticated user id.

    Raises Unauthenticated if the user no longer exists.
    """
    data = await metadata.get(Collections.USERS, user_id)
    if data is None:
        raise Unauthenticated("User no longer exists")
    return Principal.from_user(User(**data))
