"""
Core module - fundamental data models and shared infrastructure.

This module contains:
- models: Core data models (User, Project, Ticket, Comment, RoleRequest, ...)
- results: Error taxonomy and the tagged Result type
- utils: Shared utility functions
"""

from tracker.core.models import (
    Activity,
    ActivityType,
    Comment,
    FileAttachment,
    Priority,
    Project,
    Provider,
    Role,
    RoleRequest,
    Status,
    Ticket,
    User,
    UserResponse,
)

from tracker.core.utils import (
    generate_token,
    seconds_until,
    utc_now,
)

__all__ = [
    # Models
    "Activity",
    "ActivityType",
    "Comment",
    "FileAttachment",
    "Priority",
    "Project",
    "Provider",
    "Role",
    "RoleRequest",
    "Status",
    "Ticket",
    "User",
    "UserResponse",
    # Utils
    "generate_token",
    "seconds_until",
    "utc_now",
]
