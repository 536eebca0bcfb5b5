"""
Activity / Notification Dispatcher.

Every state-changing workflow step ends here:

1. `record` writes the audit trail entry after the change itself is stored.
   Through `dispatch`, a failed write is reported like a failed send.
2. `notify` emails the affected users. It is best effort: a failure is
   logged and reported back in the `Delivery`, never rolled back.

Workflows call `dispatch` (record + notify) and hand the returned Delivery
to `Result.success`, which turns a failed send into a partial result.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from tracker.config import Settings
from tracker.core.models import Activity, ActivityType, User
from tracker.core.utils import utc_now
from tracker.integrations.email import EmailService
from tracker.storage.base import Collections, MetadataStorage, StorageError

logger = logging.getLogger(__name__)


SUBJECTS: dict[ActivityType, str] = {
    ActivityType.CREATED: "New ticket",
    ActivityType.UPDATED: "Updated",
    ActivityType.ASSIGNED: "You were assigned a ticket",
    ActivityType.UNASSIGNED: "You were unassigned from a ticket",
    ActivityType.COMMENTED: "New comment",
    ActivityType.DELETED: "Deleted",
    ActivityType.MEMBER_ADDED: "You were added to a project",
    ActivityType.MEMBER_REMOVED: "You were removed from a project",
    ActivityType.MEMBER_LEFT: "A member left your project",
    ActivityType.OWNERSHIP_TRANSFERRED: "Project ownership transferred",
    ActivityType.ROLE_REQUESTED: "Role change requested",
    ActivityType.ROLE_APPROVED: "Your role request was approved",
    ActivityType.ROLE_REJECTED: "Your role request was rejected",
}


@dataclass
class Delivery:
    """Outcome of one dispatch: the recorded activity and how mail went."""

    activity: Activity | None
    recipients: list[str] = field(default_factory=list)
    delivered: bool = True
    error: str | None = None


class ActivityDispatcher:
    """Records audit entries and sends the matching notification."""

    def __init__(self, metadata: MetadataStorage, email: EmailService, settings: Settings):
        self.metadata = metadata
        self.email = email
        self.settings = settings

    async def record(
        self,
        type: ActivityType,
        author_id: int,
        text: str,
        project_id: int | None = None,
        ticket_id: int | None = None,
    ) -> Activity:
        """Persist an audit entry. Storage errors propagate."""
        data = await self.metadata.insert(Collections.ACTIVITIES, {
            "type": type.value,
            "author_id": author_id,
            "text": text,
            "project_id": project_id,
            "ticket_id": ticket_id,
            "created_at": utc_now(),
        })
        logger.debug(f"Activity {data['id']}: {type.value} by user {author_id}")
        return Activity(**data)

    def _link(self, activity: Activity) -> str:
        if activity.ticket_id is not None:
            return f"{self.settings.app_url}/tickets/{activity.ticket_id}"
        if activity.project_id is not None:
            return f"{self.settings.app_url}/projects/{activity.project_id}"
        return self.settings.app_url

    async def notify(self, activity: Activity, recipients: list[str]) -> Delivery:
        """
        Email an activity to recipients.

        Never raises: a failed send comes back as `Delivery.error`.
        """
        recipients = list(dict.fromkeys(r for r in recipients if r))
        if not recipients:
            return Delivery(activity=activity)

        try:
            sent = await self.email.send(
                to=recipients,
                template="activity",
                data={
                    "subject": SUBJECTS.get(activity.type, activity.type.value),
                    "text": activity.text,
                    "link": self._link(activity),
                },
            )
        except Exception:
            logger.exception(f"Notification for activity {activity.id} raised")
            sent = False

        if not sent:
            logger.warning(f"Notification for activity {activity.id} not delivered to {recipients}")
            return Delivery(
                activity=activity,
                recipients=recipients,
                delivered=False,
                error="Notification could not be delivered",
            )

        return Delivery(activity=activity, recipients=recipients)

    async def dispatch(
        self,
        type: ActivityType,
        author_id: int,
        text: str,
        recipient_ids: Iterable[int] = (),
        project_id: int | None = None,
        ticket_id: int | None = None,
        emails: Iterable[str] = (),
    ) -> Delivery:
        """
        Record an activity, then notify the given users by email.

        Called after the change is stored, so this never raises a storage
        error: a failed audit write or address lookup comes back as a
        Delivery with `error` set, like a failed send.
        """
        try:
            activity = await self.record(type, author_id, text, project_id=project_id, ticket_id=ticket_id)
        except StorageError:
            logger.exception(f"Could not record {type.value} activity by user {author_id}")
            return Delivery(activity=None, delivered=False, error="Change saved, but its activity was not recorded")

        try:
            recipients = [*emails, *await self.emails_for(recipient_ids)]
        except StorageError:
            logger.exception(f"Could not resolve recipients for activity {activity.id}")
            return Delivery(activity=activity, delivered=False, error="Change saved, but recipients could not be notified")

        return await self.notify(activity, recipients)

    async def emails_for(self, user_ids: Iterable[int]) -> list[str]:
        """Look up email addresses, skipping users that no longer exist."""
        emails = []
        for user_id in dict.fromkeys(user_ids):
            data = await self.metadata.get(Collections.USERS, user_id)
            if data is not None:
                emails.append(User(**data).email)
        return emails
