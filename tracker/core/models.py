"""
Core data models for the issue tracker.

These models represent the fundamental entities: Users, Projects, Tickets,
Comments, role-change Requests, Activities and File attachments.

Entities reference each other by integer id only. Relations such as project
membership and ticket assignment are stored as id lists with set semantics,
so no model ever holds another model directly.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from tracker.core.utils import utc_now


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Global role of a user across the whole platform."""

    EMPLOYEE = "EMPLOYEE"
    PROJECT_OWNER = "PROJECT_OWNER"
    ADMIN = "ADMIN"


class Provider(str, Enum):
    """How a user can sign in."""

    LOCAL = "LOCAL"  # Email + password
    GOOGLE = "GOOGLE"  # Google OAuth


class Priority(str, Enum):
    """Ticket priority."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Status(str, Enum):
    """
    Ticket status.

    OPEN is the initial state. The system moves a ticket to ASSIGNED when its
    assignee set goes from empty to non-empty; every other transition is set
    explicitly by a project member.
    """

    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class ActivityType(str, Enum):
    """Kinds of audit trail entries."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    ASSIGNED = "ASSIGNED"
    UNASSIGNED = "UNASSIGNED"
    COMMENTED = "COMMENTED"
    DELETED = "DELETED"
    MEMBER_ADDED = "MEMBER_ADDED"
    MEMBER_REMOVED = "MEMBER_REMOVED"
    MEMBER_LEFT = "MEMBER_LEFT"
    OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
    ROLE_REQUESTED = "ROLE_REQUESTED"
    ROLE_APPROVED = "ROLE_APPROVED"
    ROLE_REJECTED = "ROLE_REJECTED"


# =============================================================================
# User
# =============================================================================


class User(BaseModel):
    """
    A registered user of the platform.

    `password_hash` is None for accounts that only ever signed in through
    an OAuth provider.
    """

    id: int
    username: str
    email: str
    name: str

    # Auth
    password_hash: str | None = None
    providers: list[Provider] = Field(default_factory=lambda: [Provider.LOCAL])
    google_id: str | None = None

    # Authorization
    role: Role = Role.EMPLOYEE

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class UserResponse(BaseModel):
    """User data returned to clients (no credentials)."""

    id: int
    username: str
    email: str
    name: str
    providers: list[Provider]
    role: Role
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls(**user.model_dump(exclude={"password_hash", "google_id"}))


# =============================================================================
# Project
# =============================================================================


class Project(BaseModel):
    """
    A project - the top-level container for tickets.

    The owner (`created_by_id`) is always contained in `member_ids`.
    Project names are unique per owner, not globally.
    """

    id: int
    name: str
    description: str = ""

    # Ownership and membership
    created_by_id: int
    member_ids: list[int] = Field(default_factory=list)

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_member(self, user_id: int) -> bool:
        return user_id in self.member_ids

    def is_owner(self, user_id: int) -> bool:
        return user_id == self.created_by_id


# =============================================================================
# Ticket
# =============================================================================


class Ticket(BaseModel):
    """A ticket filed against exactly one project."""

    id: int
    project_id: int
    number: int  # Sequential within the project

    name: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    status: Status = Status.OPEN

    reporter_id: int
    assignee_ids: list[int] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_assigned_to(self, user_id: int) -> bool:
        return user_id in self.assignee_ids


class Comment(BaseModel):
    """A comment on a ticket."""

    id: int
    ticket_id: int
    author_id: int
    text: str

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class FileAttachment(BaseModel):
    """Metadata row for a file stored in content storage."""

    id: int
    ticket_id: int
    uploader_id: int
    filename: str
    storage_key: str
    content_type: str = "application/octet-stream"
    size: int = 0

    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Role change requests
# =============================================================================


class RoleRequest(BaseModel):
    """
    A pending request to change a user's global role.

    At most one exists per author (unique `author_id`).
    """

    id: int
    author_id: int
    role: Role

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Activity (audit trail)
# =============================================================================


class Activity(BaseModel):
    """An audit trail entry for one state-changing action."""

    id: int
    type: ActivityType
    author_id: int
    text: str

    # Scope (either, both or neither)
    project_id: int | None = None
    ticket_id: int | None = None

    created_at: datetime = Field(default_factory=utc_now)
