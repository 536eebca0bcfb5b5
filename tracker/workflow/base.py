"""
Shared plumbing for the workflow classes.

Every workflow method follows the same order:

1. Re-read the caller (`_actor`) and the entities involved from storage.
2. Decide, raising a WorkflowError subclass on refusal.
3. Apply the change as a single storage call.
4. Dispatch the activity + notification.

Steps 1-2 run against fresh reads immediately before step 3, so a role or
membership change made by a concurrent request is honoured up to that point.
"""

from __future__ import annotations

import logging
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal
from tracker.core.models import Comment, FileAttachment, Project, RoleRequest, Ticket, User
from tracker.core.results import Forbidden, NotFound, Unauthenticated
from tracker.services.activity import ActivityDispatcher
from tracker.storage.base import Collections, StorageProvider

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class Page(BaseModel, Generic[T]):
    """One page of a cursor-paginated listing (ordered by id)."""

    items: list[T]
    next_cursor: int | None = None


class Workflow:
    """Base class holding storage and dispatcher handles."""

    def __init__(self, storage: StorageProvider, dispatcher: ActivityDispatcher):
        self.storage = storage
        self.metadata = storage.metadata
        self.dispatcher = dispatcher

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _load(self, collection: str, id: int, model: type[M], label: str) -> M:
        data = await self.metadata.get(collection, id)
        if data is None:
            raise NotFound(f"{label} not found")
        return model(**data)

    async def _user(self, user_id: int) -> User:
        return await self._load(Collections.USERS, user_id, User, "User")

    async def _project(self, project_id: int) -> Project:
        return await self._load(Collections.PROJECTS, project_id, Project, "Project")

    async def _ticket(self, ticket_id: int) -> Ticket:
        return await self._load(Collections.TICKETS, ticket_id, Ticket, "Ticket")

    async def _comment(self, comment_id: int) -> Comment:
        return await self._load(Collections.COMMENTS, comment_id, Comment, "Comment")

    async def _file(self, file_id: int) -> FileAttachment:
        return await self._load(Collections.FILES, file_id, FileAttachment, "File")

    async def _role_request(self, request_id: int) -> RoleRequest:
        return await self._load(Collections.ROLE_REQUESTS, request_id, RoleRequest, "Request")

    async def _actor(self, principal: Principal) -> Principal:
        """
        The caller as currently stored.

        A principal built at the start of a request may be stale by the time
        we mutate; always decide on this one.
        """
        data = await self.metadata.get(Collections.USERS, principal.user_id)
        if data is None:
            raise Unauthenticated("User no longer exists")
        return Principal.from_user(User(**data))

    # -------------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_member(actor: Principal, project: Project) -> None:
        if not project.is_member(actor.user_id):
            raise Forbidden("You are not a member of this project")

    @staticmethod
    def _require_member_or_admin(actor: Principal, project: Project) -> None:
        if not (project.is_member(actor.user_id) or actor.can(Capability.PROJECT_ADMINISTER)):
            raise Forbidden("You are not a member of this project")

    @staticmethod
    def _require_owner_or_admin(actor: Principal, project: Project) -> None:
        if not (project.is_owner(actor.user_id) or actor.can(Capability.PROJECT_ADMINISTER)):
            raise Forbidden("Only the project owner or an admin can do this")

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    async def _page(
        self,
        collection: str,
        model: type[M],
        filters: dict[str, Any] | None = None,
        contains: dict[str, Any] | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
        search: dict[str, str] | None = None,
    ) -> Page[M]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        # One extra row tells us whether another page exists
        rows = await self.metadata.query(
            collection,
            filters=filters,
            contains=contains,
            limit=limit + 1,
            after_id=cursor,
            search=search,
        )
        items = [model(**row) for row in rows[:limit]]
        next_cursor = items[-1].id if len(rows) > limit else None
        return Page[model](items=items, next_cursor=next_cursor)
