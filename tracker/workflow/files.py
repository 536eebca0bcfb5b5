"""
Ticket file attachments.

The object goes to ContentStorage and a metadata row to MetadataStorage.
On upload the object is written first and removed again if the row cannot
be inserted. On delete the row goes first; an object left behind by a
failed object delete is only logged, since nothing references it anymore.
"""

from __future__ import annotations

import logging
from pathlib import PurePath

from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal
from tracker.core.models import ActivityType, FileAttachment
from tracker.core.results import Forbidden, InvalidOperation, NotFound, Result, returns_result
from tracker.core.utils import generate_token, utc_now
from tracker.storage.base import Collections, StorageError
from tracker.workflow.base import Workflow

logger = logging.getLogger(__name__)


def storage_key(ticket_id: int, filename: str) -> str:
    """Unique object key for an upload."""
    safe_name = PurePath(filename).name.replace(" ", "_") or "file"
    return f"tickets/{ticket_id}/{generate_token(8)}-{safe_name}"


class FileWorkflow(Workflow):

    @returns_result
    async def attach_file(
        self,
        principal: Principal,
        ticket_id: int,
        filename: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> Result[FileAttachment]:
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member(actor, project)

        if not data:
            raise InvalidOperation("File is empty")

        key = storage_key(ticket.id, filename)
        await self.storage.content.put(key, data, content_type)
        try:
            row = await self.metadata.insert(Collections.FILES, {
                "ticket_id": ticket.id,
                "uploader_id": actor.user_id,
                "filename": filename,
                "storage_key": key,
                "content_type": content_type,
                "size": len(data),
                "created_at": utc_now(),
            })
        except StorageError:
            await self.storage.content.delete(key)
            raise
        attachment = FileAttachment(**row)

        logger.info(f"User {actor.user_id} attached {key} ({len(data)} bytes)")
        delivery = await self.dispatcher.dispatch(
            ActivityType.UPDATED,
            actor.user_id,
            f"{actor.username} attached {filename} to ticket #{ticket.number}",
            recipient_ids=[ticket.reporter_id, *ticket.assignee_ids],
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(attachment, delivery)

    @returns_result
    async def delete_file(self, principal: Principal, file_id: int) -> Result[FileAttachment]:
        actor = await self._actor(principal)
        attachment = await self._file(file_id)
        ticket = await self._ticket(attachment.ticket_id)
        project = await self._project(ticket.project_id)

        is_uploader = attachment.uploader_id == actor.user_id and project.is_member(actor.user_id)
        if not (is_uploader or project.is_owner(actor.user_id) or actor.can(Capability.PROJECT_ADMINISTER)):
            raise Forbidden("Only the uploader, the project owner or an admin can delete a file")

        if not await self.metadata.delete(Collections.FILES, attachment.id):
            raise NotFound("File not found")
        try:
            await self.storage.content.delete(attachment.storage_key)
        except StorageError:
            logger.exception(f"Orphaned object {attachment.storage_key} left in content storage")

        delivery = await self.dispatcher.dispatch(
            ActivityType.DELETED,
            actor.user_id,
            f"{actor.username} removed {attachment.filename} from ticket #{ticket.number}",
            recipient_ids=[ticket.reporter_id, *ticket.assignee_ids],
            project_id=project.id,
            ticket_id=ticket.id,
        )
        return Result.success(attachment, delivery)

    @returns_result
    async def get_file(self, principal: Principal, file_id: int) -> FileAttachment:
        actor = await self._actor(principal)
        attachment = await self._file(file_id)
        ticket = await self._ticket(attachment.ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member_or_admin(actor, project)
        return attachment

    @returns_result
    async def list_files(self, principal: Principal, ticket_id: int) -> list[FileAttachment]:
        actor = await self._actor(principal)
        ticket = await self._ticket(ticket_id)
        project = await self._project(ticket.project_id)
        self._require_member_or_admin(actor, project)
        rows = await self.metadata.query(Collections.FILES, {"ticket_id": ticket.id}, limit=1000)
        return [FileAttachment(**row) for row in rows]
