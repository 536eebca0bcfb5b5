"""
Capabilities granted by global role.

This defines WHAT a role may do platform-wide, not HOW we check it.
Project-scoped rules (owner, member) are decided by the membership
authority against the project itself, not by role.
"""

from enum import Enum

from tracker.core.models import Role


class Capability(str, Enum):
    """
    Platform-wide capabilities.

    A user's capabilities are derived from their current global role.
    """

    # Projects
    PROJECT_CREATE = "project.create"
    PROJECT_ADMINISTER = "project.administer"  # Act as owner on any project

    # Role change protocol
    ROLE_REQUEST = "role.request"
    ROLE_REVIEW = "role.review"  # Approve / reject / list requests

    # Users
    USER_ADMINISTER = "user.administer"  # Edit / delete other users

    # Comments
    COMMENT_MODERATE = "comment.moderate"  # Delete anyone's comment


# =============================================================================
# Capability Mappings
# =============================================================================


ROLE_CAPABILITIES: dict[Role, set[Capability]] = {
    Role.EMPLOYEE: {
        Capability.PROJECT_CREATE,
        Capability.ROLE_REQUEST,
    },
    Role.PROJECT_OWNER: {
        Capability.PROJECT_CREATE,
        Capability.ROLE_REQUEST,
    },
    Role.ADMIN: {
        Capability.PROJECT_CREATE,
        Capability.PROJECT_ADMINISTER,
        Capability.ROLE_REVIEW,
        Capability.USER_ADMINISTER,
        Capability.COMMENT_MODERATE,
    },
}


def get_capabilities(role: Role) -> set[Capability]:
    """All capabilities for a global role."""
    return set(ROLE_CAPABILITIES.get(role, set()))
