"""
Ticket Workflow.

Every ticket operation is gated on membership of the ticket's project.
Admins may read tickets of projects they are not members of, but changing
a ticket always requires membership.

Status machine:

    OPEN -> ASSIGNED -> IN_PROGRESS -> RESOLVED -> CLOSED

Only one transition is made by the system: when the assignee set goes from
empty to non-empty the ticket becomes ASSIGNED. Every other status change
is whatever the member sets through `edit_ticket`. Removing the last
assignee leaves the status untouched.
"""

from __future__ import annotations

import logging

from tracker.auth.context import Principal
from tracker.core.models import ActivityType, Priority, Status, Ticket
from tracker.core.results import (
    InvalidOperation,
    NotAMember,
    NotFound,
    Result,
    returns_result,
)
from tracker.core.utils import utc_now
from tracker.storage.base import Collections
from tracker.workflow.base import DEFAULT_PAGE_SIZE, Page, Workflow

logger = logging.getLogger(__name__)


def ticket_counter(project_id: int) -> str:
    """Name of the per-project ticket number sequence."""
    return f"ticket_number:{project_id}"


class TicketWorkflow(Workflow):
    """Create, edit, assign and unassign tickets."""

    @returns_result
    async def create_ticket(
        self,
        principal: Principal,
        project_id: int,
        name: str,
        description: str = "",
        priority: Priority = Priority.MEDIUM,
    ) -> Result[Ticket]:
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_member(actor, project)

        number = await self.metadata.next_sequence(ticket_counter(project.id))
        now = utc_now()
        data = await self.metadata.insert(Collections.TICKETS, {
            "project_id": project.id,
            "number": number,
            "name": name,
            "description": description,
            "priority": priority.value,
            "status": Status.OPEN.value,
            "reporter_id": actor.user_id,
            "assignee_ids": [],
            "created_at": now,
            "updated_at": now,
        })
        ticket = Ticket(**data)

        logger.info(f"User {actor.user_id} created ticket {project.id}-{number}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.CREATED,
            actor.user_id,
            f"{actor.username} created ticket #{number} {name}",
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(ticket, delivery)

    @returns_result
    async def edit_ticket(
        self,
        principal: Principal,
        ticket_id: int,
        name: str | None = None,
        description: str | None = None,
        priority: Priority | None = None,
        status: Status | None = None,
    ) -> Result[Ticket]:
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member(actor, project)

        updates = {}
        if name is not None:
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if priority is not None:
            updates["priority"] = priority.value
        if status is not None:
            updates["status"] = status.value
        if not updates:
            raise InvalidOperation("Nothing to update")

        changed = ", ".join(sorted(updates))
        updates["updated_at"] = utc_now()
        updated = await self.metadata.update(Collections.TICKETS, ticket.id, updates=updates)
        if updated is None:
            raise NotFound("Ticket not found")
        ticket = Ticket(**updated)

        delivery = await self.dispatcher.dispatch(
            ActivityType.UPDATED,
            actor.user_id,
            f"{actor.username} updated {changed} of ticket #{ticket.number} {ticket.name}",
            recipient_ids=[ticket.reporter_id, *ticket.assignee_ids],
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(ticket, delivery)

    @returns_result
    async def assign(self, principal: Principal, ticket_id: int, user_ids: list[int]) -> Result[Ticket]:
        """
        Assign one or more members to a ticket.

        Users already assigned are skipped, so only the delta is applied and
        only newly assigned users are notified. Assigning nobody new is a
        successful no-op with no activity.
        """
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member(actor, project)

        requested = list(dict.fromkeys(user_ids))
        if not requested:
            raise InvalidOperation("No users to assign")

        new_ids = [uid for uid in requested if not ticket.is_assigned_to(uid)]
        for uid in new_ids:
            target = await self._user(uid)
            if not project.is_member(target.id):
                raise NotAMember(f"{target.username} is not a member of {project.name}")

        if not new_ids:
            return Result.success(ticket)

        updates = {"updated_at": utc_now()}
        if not ticket.assignee_ids:
            updates["status"] = Status.ASSIGNED.value

        updated = await self.metadata.update(
            Collections.TICKETS,
            ticket.id,
            updates=updates,
            add_to_set={"assignee_ids": new_ids},
        )
        if updated is None:
            raise NotFound("Ticket not found")
        ticket = Ticket(**updated)

        logger.info(f"User {actor.user_id} assigned {new_ids} to ticket {ticket.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.ASSIGNED,
            actor.user_id,
            f"{actor.username} assigned ticket #{ticket.number} {ticket.name}",
            recipient_ids=new_ids,
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(ticket, delivery)

    async def assign_user(self, principal: Principal, ticket_id: int, user_id: int) -> Result[Ticket]:
        """Assign a single member."""
        return await self.assign(principal, ticket_id, [user_id])

    @returns_result
    async def unassign(self, principal: Principal, ticket_id: int, user_id: int) -> Result[Ticket]:
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member(actor, project)

        if not ticket.is_assigned_to(user_id):
            raise InvalidOperation("User is not assigned to this ticket")

        updated = await self.metadata.update(
            Collections.TICKETS,
            ticket.id,
            updates={"updated_at": utc_now()},
            remove_from_set={"assignee_ids": [user_id]},
        )
        if updated is None:
            raise NotFound("Ticket not found")
        ticket = Ticket(**updated)

        logger.info(f"User {actor.user_id} unassigned user {user_id} from ticket {ticket.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.UNASSIGNED,
            actor.user_id,
            f"{actor.username} unassigned you from ticket #{ticket.number} {ticket.name}",
            recipient_ids=[user_id],
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(ticket, delivery)

    @returns_result
    async def get_ticket(self, principal: Principal, ticket_id: int) -> Ticket:
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member_or_admin(actor, project)
        return ticket

    @returns_result
    async def list_tickets(
        self,
        principal: Principal,
        project_id: int,
        status: Status | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[Ticket]:
        actor = await self._actor(principal)
        project = await self._project(project_id)
        self._require_member_or_admin(actor, project)

        filters = {"project_id": project.id}
        if status is not None:
            filters["status"] = status.value
        return await self._page(Collections.TICKETS, Ticket, filters=filters, limit=limit, cursor=cursor)
