"""
User Administration.

Users edit and delete themselves; admins edit and delete other users.
One admin-protection rule applies everywhere: an admin never edits or
deletes another admin (the same rule the role authority applies to role
changes).

Deletion and project ownership:

- a user who owns projects cannot delete themselves (Conflict);
- an admin deleting such a user takes over those projects, becoming owner
  and member of each. If that would give the admin two projects with the
  same name, nothing is changed (Conflict).
"""

from __future__ import annotations

import logging

from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal
from tracker.auth.passwords import hash_password
from tracker.core.models import ActivityType, Comment, Provider, User, UserResponse
from tracker.core.results import (
    Conflict,
    Forbidden,
    InvalidOperation,
    NotFound,
    Result,
    returns_result,
)
from tracker.core.utils import utc_now
from tracker.storage.base import Collections, DuplicateKeyError
from tracker.workflow.base import DEFAULT_PAGE_SIZE, Page, Workflow

logger = logging.getLogger(__name__)

CASCADE_BATCH = 10_000


class UserAdministration(Workflow):

    def _check_target(self, actor: Principal, target: User) -> bool:
        """Return whether the call is self-service; raise if not allowed at all."""
        if actor.user_id == target.id:
            return True
        if not actor.can(Capability.USER_ADMINISTER):
            raise Forbidden("You can only change your own account")
        if target.is_admin:
            raise Forbidden("An admin cannot modify another admin")
        return False

    @returns_result
    async def get_user(self, principal: Principal, user_id: int) -> UserResponse:
        await self._actor(principal)
        return UserResponse.from_user(await self._user(user_id))

    @returns_result
    async def get_user_by_username(self, principal: Principal, username: str) -> UserResponse:
        await self._actor(principal)
        data = await self.metadata.find_one(Collections.USERS, {"username": username})
        if data is None:
            raise NotFound("User not found")
        return UserResponse.from_user(User(**data))

    @returns_result
    async def list_user_comments(
        self,
        principal: Principal,
        user_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[Comment]:
        """
        Comments written by one user, oldest first.

        Comments span projects the caller may not belong to, so only the
        author and admins can list them.
        """
        actor = await self._actor(principal)
        target = await self._user(user_id)
        if target.id != actor.user_id and not actor.can(Capability.USER_ADMINISTER):
            raise Forbidden("You can only list your own comments")
        return await self._page(
            Collections.COMMENTS,
            Comment,
            filters={"author_id": target.id},
            limit=limit,
            cursor=cursor,
        )

    @returns_result
    async def list_users(
        self,
        principal: Principal,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[UserResponse]:
        await self._actor(principal)
        page = await self._page(Collections.USERS, User, limit=limit, cursor=cursor)
        return Page[UserResponse](
            items=[UserResponse.from_user(u) for u in page.items],
            next_cursor=page.next_cursor,
        )

    @returns_result
    async def edit_user(
        self,
        principal: Principal,
        user_id: int,
        name: str | None = None,
        username: str | None = None,
        password: str | None = None,
    ) -> Result[UserResponse]:
        actor = await self._actor(principal)
        target = await self._user(user_id)
        is_self = self._check_target(actor, target)

        if password is not None and not is_self:
            raise Forbidden("Admins cannot set another user's password")

        updates = {}
        add_to_set = {}
        if name is not None:
            updates["name"] = name
        if username is not None and username != target.username:
            taken = await self.metadata.find_one(Collections.USERS, {"username": username})
            if taken is not None:
                raise Conflict(f"Username {username} is taken")
            updates["username"] = username
        if password is not None:
            updates["password_hash"] = hash_password(password)
            add_to_set["providers"] = [Provider.LOCAL.value]
        if not updates:
            raise InvalidOperation("Nothing to update")
        updates["updated_at"] = utc_now()

        try:
            updated = await self.metadata.update(
                Collections.USERS, target.id, updates=updates, add_to_set=add_to_set
            )
        except DuplicateKeyError:
            raise Conflict(f"Username {username} is taken")
        if updated is None:
            raise NotFound("User not found")

        logger.info(f"User {actor.user_id} edited user {target.id}: {sorted(updates)}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.UPDATED,
            actor.user_id,
            f"{actor.username} updated the account of {target.username}",
            recipient_ids=[] if is_self else [target.id],
        )
        return Result.success(UserResponse.from_user(User(**updated)), delivery)

    @returns_result
    async def delete_user(self, principal: Principal, user_id: int) -> Result[UserResponse]:
        actor = await self._actor(principal)
        target = await self._user(user_id)
        is_self = self._check_target(actor, target)

        owned = await self.metadata.query(
            Collections.PROJECTS, {"created_by_id": target.id}, limit=CASCADE_BATCH
        )
        if owned and is_self:
            raise Conflict("Transfer or delete your projects before deleting your account")

        for project in owned:
            clash = await self.metadata.find_one(
                Collections.PROJECTS,
                {"name": project["name"], "created_by_id": actor.user_id},
            )
            if clash is not None:
                raise Conflict(f"You already own a project named {project['name']}")

        for project in owned:
            await self.metadata.update(
                Collections.PROJECTS,
                project["id"],
                updates={"created_by_id": actor.user_id, "updated_at": utc_now()},
                add_to_set={"member_ids": [actor.user_id]},
            )
            logger.info(f"Project {project['id']} reassigned from user {target.id} to admin {actor.user_id}")

        await self._detach(target.id)
        if not await self.metadata.delete(Collections.USERS, target.id):
            raise NotFound("User not found")

        logger.info(f"User {actor.user_id} deleted user {target.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.DELETED,
            actor.user_id,
            f"{actor.username} deleted the account of {target.username}",
            emails=[] if is_self else [target.email],
        )
        return Result.success(UserResponse.from_user(target), delivery)

    async def _detach(self, user_id: int) -> None:
        """Remove a user from every relation that must not outlive them."""
        await self.metadata.delete_where(Collections.ROLE_REQUESTS, {"author_id": user_id})
        await self.metadata.delete_where(Collections.COMMENTS, {"author_id": user_id})

        projects = await self.metadata.query(
            Collections.PROJECTS, contains={"member_ids": user_id}, limit=CASCADE_BATCH
        )
        for project in projects:
            await self.metadata.update(
                Collections.PROJECTS, project["id"], remove_from_set={"member_ids": [user_id]}
            )

        tickets = await self.metadata.query(
            Collections.TICKETS, contains={"assignee_ids": user_id}, limit=CASCADE_BATCH
        )
        for ticket in tickets:
            await self.metadata.update(
                Collections.TICKETS, ticket["id"], remove_from_set={"assignee_ids": [user_id]}
            )
