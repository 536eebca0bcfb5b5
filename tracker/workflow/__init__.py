"""
Workflow - who may do what, and what state results.

Every public coroutine takes the calling Principal first and returns a
`Result` (see tracker.core.results).
"""

from tracker.workflow.base import Page, Workflow
from tracker.workflow.comments import CommentWorkflow
from tracker.workflow.files import FileWorkflow
from tracker.workflow.membership import MembershipAuthority
from tracker.workflow.projects import ProjectService
from tracker.workflow.roles import RoleAuthority
from tracker.workflow.tickets import TicketWorkflow
from tracker.workflow.users import UserAdministration

__all__ = [
    "CommentWorkflow",
    "FileWorkflow",
    "MembershipAuthority",
    "Page",
    "ProjectService",
    "RoleAuthority",
    "TicketWorkflow",
    "UserAdministration",
    "Workflow",
]
