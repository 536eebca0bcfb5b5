"""
Membership Authority.

Decides who belongs to a project and who owns it, and keeps two invariants:

- the owner (`created_by_id`) is always in `member_ids`;
- a project is never left without an owner. The owner cannot be removed and
  cannot leave; ownership has to be transferred first.
"""

from __future__ import annotations

import logging

from tracker.auth.context import Principal
from tracker.core.models import ActivityType, Project
from tracker.core.results import (
    Conflict,
    InvalidOperation,
    NotAMember,
    NotFound,
    Result,
    returns_result,
)
from tracker.core.utils import utc_now
from tracker.storage.base import Collections
from tracker.workflow.base import Workflow

logger = logging.getLogger(__name__)


class MembershipAuthority(Workflow):
    """Project membership and ownership."""

    async def is_member(self, user_id: int, project_id: int) -> bool:
        data = await self.metadata.get(Collections.PROJECTS, project_id)
        return data is not None and Project(**data).is_member(user_id)

    async def is_owner(self, user_id: int, project_id: int) -> bool:
        data = await self.metadata.get(Collections.PROJECTS, project_id)
        return data is not None and Project(**data).is_owner(user_id)

    @returns_result
    async def add_member(self, principal: Principal, project_id: int, user_id: int) -> Result[Project]:
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_owner_or_admin(actor, project)

        target = await self._user(user_id)
        if project.is_member(target.id):
            raise Conflict(f"{target.username} is already a member of {project.name}")

        updated = await self.metadata.update(
            Collections.PROJECTS,
            project.id,
            updates={"updated_at": utc_now()},
            add_to_set={"member_ids": [target.id]},
        )
        if updated is None:
            raise NotFound("Project not found")

        logger.info(f"User {actor.user_id} added user {target.id} to project {project.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.MEMBER_ADDED,
            actor.user_id,
            f"{actor.username} added {target.username} to {project.name}",
            recipient_ids=[target.id],
            project_id=project.id,
        )
        return Result.success(Project(**updated), delivery)

    @returns_result
    async def remove_member(self, principal: Principal, project_id: int, user_id: int) -> Result[Project]:
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_owner_or_admin(actor, project)

        if project.is_owner(user_id):
            raise InvalidOperation("The project owner cannot be removed; transfer ownership or delete the project")
        if not project.is_member(user_id):
            raise NotAMember()

        updated = await self.metadata.update(
            Collections.PROJECTS,
            project.id,
            updates={"updated_at": utc_now()},
            remove_from_set={"member_ids": [user_id]},
        )
        if updated is None:
            raise NotFound("Project not found")

        logger.info(f"User {actor.user_id} removed user {user_id} from project {project.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.MEMBER_REMOVED,
            actor.user_id,
            f"{actor.username} removed user #{user_id} from {project.name}",
            recipient_ids=[user_id],
            project_id=project.id,
        )
        return Result.success(Project(**updated), delivery)

    @returns_result
    async def leave(self, principal: Principal, project_id: int) -> Result[Project]:
        actor = await self._actor(principal)
        project = await self._project(project_id)

        if not project.is_member(actor.user_id):
            raise NotAMember("You are not a member of this project")
        if project.is_owner(actor.user_id):
            raise InvalidOperation("The project owner cannot leave; transfer ownership first")

        updated = await self.metadata.update(
            Collections.PROJECTS,
            project.id,
            updates={"updated_at": utc_now()},
            remove_from_set={"member_ids": [actor.user_id]},
        )
        if updated is None:
            raise NotFound("Project not found")

        logger.info(f"User {actor.user_id} left project {project.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.MEMBER_LEFT,
            actor.user_id,
            f"{actor.username} left {project.name}",
            recipient_ids=[project.created_by_id],
            project_id=project.id,
        )
        return Result.success(Project(**updated), delivery)

    @returns_result
    async def transfer_ownership(
        self,
        principal: Principal,
        project_id: int,
        new_owner_id: int,
    ) -> Result[Project]:
        """
        Make another user the owner.

        Creator reassignment and membership insertion are one storage
        update, so no reader ever sees an owner outside the member set.
        The previous owner stays a member.
        """
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_owner_or_admin(actor, project)

        new_owner = await self._user(new_owner_id)
        if project.is_owner(new_owner.id):
            raise InvalidOperation(f"{new_owner.username} already owns {project.name}")

        clash = await self.metadata.find_one(
            Collections.PROJECTS,
            {"name": project.name, "created_by_id": new_owner.id},
        )
        if clash is not None:
            raise Conflict(f"{new_owner.username} already owns a project named {project.name}")

        previous_owner_id = project.created_by_id
        updated = await self.metadata.update(
            Collections.PROJECTS,
            project.id,
            updates={"created_by_id": new_owner.id, "updated_at": utc_now()},
            add_to_set={"member_ids": [new_owner.id]},
        )
        if updated is None:
            raise NotFound("Project not found")

        logger.info(f"Project {project.id} ownership: user {previous_owner_id} -> user {new_owner.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.OWNERSHIP_TRANSFERRED,
            actor.user_id,
            f"{actor.username} transferred ownership of {project.name} to {new_owner.username}",
            recipient_ids=[previous_owner_id, new_owner.id],
            project_id=project.id,
        )
        return Result.success(Project(**updated), delivery)
