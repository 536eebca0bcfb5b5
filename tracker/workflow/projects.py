"""
Project Service.

Project names are unique per owner: two users may each have a "Backend"
project, one user may not have two. Deleting a project removes everything
it owns (tickets, their comments and attachments, and its activity trail).
"""

from __future__ import annotations

import logging

from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal
from tracker.core.models import Activity, ActivityType, Project
from tracker.core.results import (
    Conflict,
    Forbidden,
    InvalidOperation,
    NotFound,
    Result,
    returns_result,
)
from tracker.core.utils import utc_now
from tracker.storage.base import Collections, DuplicateKeyError, StorageError
from tracker.workflow.base import DEFAULT_PAGE_SIZE, Page, Workflow

logger = logging.getLogger(__name__)

# Upper bound for child rows fetched in one cascade step
CASCADE_BATCH = 10_000


class ProjectService(Workflow):

    @returns_result
    async def create_project(self, principal: Principal, name: str, description: str = "") -> Result[Project]:
        actor = await self._actor(principal)
        if not actor.can(Capability.PROJECT_CREATE):
            raise Forbidden("You cannot create projects")

        now = utc_now()
        try:
            data = await self.metadata.insert(Collections.PROJECTS, {
                "name": name,
                "description": description,
                "created_by_id": actor.user_id,
                "member_ids": [actor.user_id],
                "created_at": now,
                "updated_at": now,
            })
        except DuplicateKeyError:
            raise Conflict(f"You already have a project named {name}")
        project = Project(**data)

        logger.info(f"User {actor.user_id} created project {project.id} ({name})")
        delivery = await self.dispatcher.dispatch(
            ActivityType.CREATED,
            actor.user_id,
            f"{actor.username} created project {name}",
            project_id=project.id,
        )
        return Result.success(project, delivery)

    @returns_result
    async def edit_project(
        self,
        principal: Principal,
        project_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> Result[Project]:
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_owner_or_admin(actor, project)

        updates = {}
        if name is not None:
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if not updates:
            raise InvalidOperation("Nothing to update")
        updates["updated_at"] = utc_now()

        try:
            updated = await self.metadata.update(Collections.PROJECTS, project.id, updates=updates)
        except DuplicateKeyError:
            raise Conflict(f"The owner already has a project named {name}")
        if updated is None:
            raise NotFound("Project not found")
        project = Project(**updated)

        delivery = await self.dispatcher.dispatch(
            ActivityType.UPDATED,
            actor.user_id,
            f"{actor.username} updated project {project.name}",
            recipient_ids=[project.created_by_id],
            project_id=project.id,
        )
        return Result.success(project, delivery)

    @returns_result
    async def delete_project(self, principal: Principal, project_id: int) -> Result[Project]:
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_owner_or_admin(actor, project)

        await self._cascade(project)
        if not await self.metadata.delete(Collections.PROJECTS, project.id):
            raise NotFound("Project not found")

        logger.info(f"User {actor.user_id} deleted project {project.id} ({project.name})")
        delivery = await self.dispatcher.dispatch(
            ActivityType.DELETED,
            actor.user_id,
            f"{actor.username} deleted project {project.name}",
            recipient_ids=project.member_ids,
        )
        return Result.success(project, delivery)

    async def _cascade(self, project: Project) -> None:
        """Delete tickets with their comments, files and activities."""
        tickets = await self.metadata.query(
            Collections.TICKETS, {"project_id": project.id}, limit=CASCADE_BATCH
        )
        for ticket in tickets:
            await self.metadata.delete_where(Collections.COMMENTS, {"ticket_id": ticket["id"]})
            files = await self.metadata.query(
                Collections.FILES, {"ticket_id": ticket["id"]}, limit=CASCADE_BATCH
            )
            for row in files:
                await self.metadata.delete(Collections.FILES, row["id"])
                try:
                    await self.storage.content.delete(row["storage_key"])
                except StorageError:
                    logger.exception(f"Orphaned object {row['storage_key']} left in content storage")
            await self.metadata.delete_where(Collections.ACTIVITIES, {"ticket_id": ticket["id"]})
            await self.metadata.delete(Collections.TICKETS, ticket["id"])

        await self.metadata.delete_where(Collections.ACTIVITIES, {"project_id": project.id})

    @returns_result
    async def get_project(self, principal: Principal, project_id: int) -> Project:
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_member_or_admin(actor, project)
        return project

    @returns_result
    async def get_project_by_name(self, principal: Principal, owner_username: str, name: str) -> Project:
        """Look a project up by its owner's username and its name."""
        actor = await self._actor(principal)
        owner = await self.metadata.find_one(Collections.USERS, {"username": owner_username})
        if owner is None:
            raise NotFound("User not found")
        data = await self.metadata.find_one(Collections.PROJECTS, {"name": name, "created_by_id": owner["id"]})
        if data is None:
            raise NotFound("Project not found")

        project = Project(**data)
        self._require_member_or_admin(actor, project)
        return project

    @returns_result
    async def list_projects(
        self,
        principal: Principal,
        contains: str = "",
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[Project]:
        """All projects, admins only. `contains` narrows by name, ignoring case."""
        actor = await self._actor(principal)
        if not actor.can(Capability.PROJECT_ADMINISTER):
            raise Forbidden("Only admins can list every project")
        return await self._page(
            Collections.PROJECTS,
            Project,
            search={"name": contains} if contains else None,
            limit=limit,
            cursor=cursor,
        )

    @returns_result
    async def list_user_projects(
        self,
        principal: Principal,
        user_id: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[Project]:
        """Projects a user is a member of (the caller by default)."""
        actor = await self._actor(principal)
        user_id = actor.user_id if user_id is None else user_id
        if user_id != actor.user_id and not actor.can(Capability.USER_ADMINISTER):
            raise Forbidden("You can only list your own projects")
        return await self._page(
            Collections.PROJECTS,
            Project,
            contains={"member_ids": user_id},
            limit=limit,
            cursor=cursor,
        )

    @returns_result
    async def list_activities(
        self,
        principal: Principal,
        project_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[Activity]:
        """Audit trail of a project, oldest first."""
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_member_or_admin(actor, project)
        return await self._page(
            Collections.ACTIVITIES,
            Activity,
            filters={"project_id": project.id},
            limit=limit,
            cursor=cursor,
        )
