"""
Ticket comments.

Members of the ticket's project may comment. Only the author may edit;
the author or an admin may delete.
"""

from __future__ import annotations

import logging

from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal
from tracker.core.models import ActivityType, Comment
from tracker.core.results import Forbidden, NotFound, Result, returns_result
from tracker.core.utils import utc_now
from tracker.storage.base import Collections
from tracker.workflow.base import DEFAULT_PAGE_SIZE, Page, Workflow

logger = logging.getLogger(__name__)


class CommentWorkflow(Workflow):

    @returns_result
    async def create_comment(self, principal: Principal, ticket_id: int, text: str) -> Result[Comment]:
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member(actor, project)

        now = utc_now()
        data = await self.metadata.insert(Collections.COMMENTS, {
            "ticket_id": ticket.id,
            "author_id": actor.user_id,
            "text": text,
            "created_at": now,
            "updated_at": now,
        })
        comment = Comment(**data)

        delivery = await self.dispatcher.dispatch(
            ActivityType.COMMENTED,
            actor.user_id,
            f"{actor.username} commented on ticket #{ticket.number}: {text}",
            recipient_ids=ticket.assignee_ids,
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(comment, delivery)

    @returns_result
    async def edit_comment(self, principal: Principal, comment_id: int, text: str) -> Result[Comment]:
        actor = await self._actor(principal)
        comment = await self._comment(comment_id)
        ticket = await self._ticket(comment.ticket_id)
        project = await self._project(ticket.project_id)

        if comment.author_id != actor.user_id:
            raise Forbidden("Only the author can edit a comment")
        self._require_member(actor, project)

        updated = await self.metadata.update(
            Collections.COMMENTS,
            comment.id,
            updates={"text": text, "updated_at": utc_now()},
        )
        if updated is None:
            raise NotFound("Comment not found")

        delivery = await self.dispatcher.dispatch(
            ActivityType.UPDATED,
            actor.user_id,
            f"{actor.username} edited a comment on ticket #{ticket.number}",
            recipient_ids=[ticket.reporter_id, *ticket.assignee_ids],
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(Comment(**updated), delivery)

    @returns_result
    async def delete_comment(self, principal: Principal, comment_id: int) -> Result[Comment]:
        actor = await self._actor(principal)
        comment = await self._comment(comment_id)
        ticket = await self._ticket(comment.ticket_id)
        project = await self._project(ticket.project_id)

        if actor.can(Capability.COMMENT_MODERATE):
            pass
        elif comment.author_id == actor.user_id:
            self._require_member(actor, project)
        else:
            raise Forbidden("Only the author or an admin can delete a comment")

        if not await self.metadata.delete(Collections.COMMENTS, comment.id):
            raise NotFound("Comment not found")

        logger.info(f"User {actor.user_id} deleted comment {comment.id}")
        delivery = await self.dispatcher.dispatch(
            ActivityType.DELETED,
            actor.user_id,
            f"{actor.username} deleted a comment on ticket #{ticket.number}",
            recipient_ids=[ticket.reporter_id, *ticket.assignee_ids],
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(comment, delivery)

    @returns_result
    async def list_comments(
        self,
        principal: Principal,
        ticket_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: int | None = None,
    ) -> Page[Comment]:
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member_or_admin(actor, project)
        return await self._page(
            Collections.COMMENTS,
            Comment,
            filters={"ticket_id": ticket.id},
            limit=limit,
            cursor=cursor,
        )
