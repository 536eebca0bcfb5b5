"""
Engine - wires storage, tokens, dispatcher and the workflows together.

Built once at app startup (or per test) and handed to whatever needs it.
"""

from __future__ import annotations

from dataclasses import dataclass

from tracker.auth.accounts import AccountService
from tracker.auth.tokens import TokenService
from tracker.config import Settings
from tracker.integrations.email import EmailService
from tracker.services.activity import ActivityDispatcher
from tracker.storage.base import StorageProvider
from tracker.workflow.comments import CommentWorkflow
from tracker.workflow.files import FileWorkflow
from tracker.workflow.membership import MembershipAuthority
from tracker.workflow.projects import ProjectService
from tracker.workflow.roles import RoleAuthority
from tracker.workflow.tickets import TicketWorkflow
from tracker.workflow.users import UserAdministration


@dataclass
class Engine:
    """Everything a request handler may call into."""

    settings: Settings
    storage: StorageProvider
    tokens: TokenService
    dispatcher: ActivityDispatcher
    accounts: AccountService
    membership: MembershipAuthority
    roles: RoleAuthority
    projects: ProjectService
    tickets: TicketWorkflow
    comments: CommentWorkflow
    files: FileWorkflow
    users: UserAdministration


def create_engine(
    settings: Settings,
    storage: StorageProvider,
    email: EmailService | None = None,
) -> Engine:
    """Build an Engine on top of the given storage."""
    email = email or EmailService(settings)
    tokens = TokenService(settings, storage.cache)
    dispatcher = ActivityDispatcher(storage.metadata, email, settings)

    return Engine(
        settings=settings,
        storage=storage,
        tokens=tokens,
        dispatcher=dispatcher,
        accounts=AccountService(storage, tokens, email, settings),
        membership=MembershipAuthority(storage, dispatcher),
        roles=RoleAuthority(storage, dispatcher),
        projects=ProjectService(storage, dispatcher),
        tickets=TicketWorkflow(storage, dispatcher),
        comments=CommentWorkflow(storage, dispatcher),
        files=FileWorkflow(storage, dispatcher),
        users=UserAdministration(storage, dispatcher),
    )
