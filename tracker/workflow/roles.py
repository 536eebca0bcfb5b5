"""
Role Authority.

A user holds exactly one global role and at most one pending RoleRequest
(unique `author_id`). The protocol:

    request  -> RoleRequest created        (EMPLOYEE / PROJECT_OWNER only)
    approve  -> role changed, request gone (ADMIN)
    reject   -> request gone               (ADMIN)
    cancel   -> request gone               (the requester)

Approve and reject consume the request by deleting it *before* anything
else happens. Only one caller can delete a given row, so of two admins
acting on the same request exactly one proceeds and the other gets NotFound.
"""

from __future__ import annotations

import logging

from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal
from tracker.core.models import ActivityType, Role, RoleRequest, User, UserResponse
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


class RoleAuthority(Workflow):
    """Global role changes through request / approve / reject / cancel."""

    @returns_result
    async def request(self, principal: Principal, role: Role) -> Result[RoleRequest]:
        actor = await self._actor(principal)
        if not actor.can(Capability.ROLE_REQUEST):
            raise Forbidden("Admins cannot request a role change")
        if role == actor.role:
            raise InvalidOperation(f"You already have the {role.value} role")

        pending = await self.metadata.find_one(Collections.ROLE_REQUESTS, {"author_id": actor.user_id})
        if pending is not None:
            raise Conflict("You already have a pending role request")

        admins = await self.metadata.query(Collections.USERS, {"role": Role.ADMIN.value}, limit=1000)

        now = utc_now()
        try:
            data = await self.metadata.insert(Collections.ROLE_REQUESTS, {
                "author_id": actor.user_id,
                "role": role.value,
                "created_at": now,
                "updated_at": now,
            })
        except DuplicateKeyError:
            # Lost the race against a concurrent request from the same user
            raise Conflict("You already have a pending role request")

        request = RoleRequest(**data)
        logger.info(f"User {actor.user_id} requested role {role.value} (request {request.id})")

        delivery = await self.dispatcher.dispatch(
            ActivityType.ROLE_REQUESTED,
            actor.user_id,
            f"{actor.username} requested the {role.value} role",
            recipient_ids=[a["id"] for a in admins],
        )
        return Result.success(request, delivery)

    async def _consume(self, actor: Principal, request_id: int) -> tuple[RoleRequest, User]:
        """
        Check an approve/reject and delete the request. Returns it with its author.

        A request whose author no longer exists can never be reviewed, so it
        is deleted before NotFound is raised; this is the one refusal that
        changes state.
        """
        if not actor.can(Capability.ROLE_REVIEW):
            raise Forbidden("Only admins can review role requests")

        request = await self._role_request(request_id)
        author_data = await self.metadata.get(Collections.USERS, request.author_id)
        if author_data is None:
            await self.metadata.delete(Collections.ROLE_REQUESTS, request.id)
            raise NotFound("The requesting user no longer exists")

        author = User(**author_data)
        if author.is_admin and author.id != actor.user_id:
            raise Forbidden("An admin's role cannot be changed by another admin")

        if not await self.metadata.delete(Collections.ROLE_REQUESTS, request.id):
            raise NotFound("Request not found")
        return request, author

    @returns_result
    async def approve(self, principal: Principal, request_id: int) -> Result[UserResponse]:
        actor = await self._actor(principal)
        request, author = await self._consume(actor, request_id)

        updated = await self.metadata.update(
            Collections.USERS,
            author.id,
            updates={"role": request.role.value, "updated_at": utc_now()},
        )
        if updated is None:
            raise NotFound("The requesting user no longer exists")

        logger.info(f"Admin {actor.user_id} approved request {request.id}: user {author.id} -> {request.role.value}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.ROLE_APPROVED,
            actor.user_id,
            f"Your request for the {request.role.value} role was approved",
            recipient_ids=[author.id],
        )
        return Result.success(UserResponse.from_user(User(**updated)), delivery)

    @returns_result
    async def reject(self, principal: Principal, request_id: int) -> Result[RoleRequest]:
        actor = await self._actor(principal)
        request, author = await self._consume(actor, request_id)

        logger.info(f"Admin {actor.user_id} rejected request {request.id} from user {author.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.ROLE_REJECTED,
            actor.user_id,
            f"Your request for the {request.role.value} role was rejected",
            recipient_ids=[author.id],
        )
        return Result.success(request, delivery)

    @returns_result
    async def cancel(self, principal: Principal, request_id: int) -> Result[RoleRequest]:
        actor = await self._actor(principal)
        request = await self._role_request(request_id)
        if request.author_id != actor.user_id:
            raise Forbidden("This request does not belong to you")

        if not await self.metadata.delete(Collections.ROLE_REQUESTS, request.id):
            raise NotFound("Request not found")

        logger.info(f"User {actor.user_id} cancelled request {request.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.DELETED,
            actor.user_id,
            f"{actor.username} cancelled their request for the {request.role.value} role",
        )
        return Result.success(request, delivery)

    @returns_result
    async def list_requests(
        self,
        principal: Principal,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[RoleRequest]:
        actor = await self._actor(principal)
        if not actor.can(Capability.ROLE_REVIEW):
            raise Forbidden("Only admins can list role requests")
        return await self._page(Collections.ROLE_REQUESTS, RoleRequest, limit=limit, cursor=cursor)

    @returns_result
    async def get_request_for_user(self, principal: Principal, user_id: int) -> RoleRequest:
        actor = await self._actor(principal)
        if actor.user_id != user_id and not actor.can(Capability.ROLE_REVIEW):
            raise Forbidden("You can only view your own role request")

        data = await self.metadata.find_one(Collections.ROLE_REQUESTS, {"author_id": user_id})
        if data is None:
            raise NotFound("No pending role request")
        return RoleRequest(**data)
