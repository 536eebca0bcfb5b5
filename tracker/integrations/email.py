# =============================================================================
# Outgoing Mail (console or AWS SES)
# =============================================================================
#
# EMAIL_BACKEND=console (default) writes each message to the log.
# EMAIL_BACKEND=ses sends through SES from AWS_SES_FROM_EMAIL and needs
# AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY / AWS_REGION.
#
# An SES account still in the sandbox only delivers to verified addresses.
#
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any

from tracker.config import Settings, get_settings

logger = logging.getLogger(__name__)

try:
    import boto3
    from botocore.exceptions import BotoCoreError, ClientError
    BOTO3_AVAILABLE = True
except ImportError:
    BOTO3_AVAILABLE = False
    boto3 = None


# =============================================================================
# Templates
# =============================================================================

_LAYOUT = (
    '<html><body style="font-family: sans-serif; max-width: 560px; margin: auto; padding: 16px;">'
    "{body}"
    "</body></html>"
)
_BUTTON = (
    '<p><a href="{url}" style="background: #2F5D8A; color: #fff; padding: 10px 24px; '
    'border-radius: 4px; text-decoration: none;">{label}</a></p>'
    '<p style="color: #777; font-size: 13px;">{url}</p>'
)
_EXPIRY = '<p style="color: #777; font-size: 13px;">Valid for {expires_minutes} minutes.</p>'

TEMPLATES = {
    "verify_email": {
        "subject": "Confirm your tracker account",
        "html": "<h2>Hi {name},</h2><p>Confirm this address to activate your account.</p>"
                + _BUTTON.format(url="{verify_url}", label="Confirm address") + _EXPIRY,
        "text": "Hi {name},\n\nConfirm this address to activate your account:\n{verify_url}\n\n"
                "Valid for {expires_minutes} minutes.\n",
    },
    "password_reset": {
        "subject": "Password reset requested",
        "html": "<h2>Password reset</h2><p>Someone asked to reset the password on this account.</p>"
                + _BUTTON.format(url="{reset_url}", label="Choose a new password") + _EXPIRY
                + "<p>Nothing changes until the link is used.</p>",
        "text": "Someone asked to reset the password on this account.\n\n{reset_url}\n\n"
                "Valid for {expires_minutes} minutes. Nothing changes until the link is used.\n",
    },
    "activity": {
        "subject": "{subject}",
        "html": "<h3>{subject}</h3><p>{text}</p><p><a href=\"{link}\">View in tracker</a></p>",
        "text": "{subject}\n\n{text}\n\n{link}\n",
    },
}


# =============================================================================
# Email Service
# =============================================================================


class EmailDeliveryError(Exception):
    """The mail backend refused or failed to send."""
    pass


class EmailService:
    """Renders templates and hands them to the configured backend."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client = None

    @property
    def client(self):
        if self._client is None and BOTO3_AVAILABLE and self.settings.use_aws:
            self._client = boto3.client(
                "ses",
                region_name=self.settings.aws_region,
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
            )
        return self._client

    @property
    def is_configured(self) -> bool:
        return BOTO3_AVAILABLE and self.settings.use_aws and bool(self.settings.aws_ses_from_email)

    def render(self, template: str, data: dict[str, Any]) -> tuple[str, str, str]:
        """Render (subject, html, text) for a template."""
        tpl = TEMPLATES.get(template)
        if tpl is None:
            raise KeyError(f"Unknown email template: {template}")
        html = _LAYOUT.format(body=tpl["html"].format(**data))
        return tpl["subject"].format(**data), html, tpl["text"].format(**data)

    async def send(self, to: list[str], template: str, data: dict[str, Any] | None = None) -> bool:
        """
        Render and deliver `template` to every address in `to`.

        Returns False (after logging) when rendering or delivery fails;
        an empty recipient list is a successful no-op.
        """
        if not to:
            return True

        try:
            subject, html_body, text_body = self.render(template, data or {})
        except KeyError as e:
            logger.error(f"Cannot render email '{template}': {e}")
            return False

        try:
            await self._deliver(to, subject, html_body, text_body)
        except EmailDeliveryError as e:
            logger.error(f"Failed to send '{template}' to {to}: {e}")
            return False

        logger.info(f"Email sent to {len(to)} recipient(s): {template}")
        return True

    async def _deliver(self, to: list[str], subject: str, html: str, text: str) -> None:
        """Hand a rendered message to the backend. Raises EmailDeliveryError."""
        if self.settings.email_backend != "ses":
            logger.info(f"[console email] to={to} subject={subject!r}\n{text.strip()}")
            return

        if not self.is_configured:
            raise EmailDeliveryError("SES backend selected but AWS is not configured")

        try:
            response = await asyncio.to_thread(
                self.client.send_email,
                Source=self.settings.aws_ses_from_email,
                Destination={"ToAddresses": to},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {
                        "Html": {"Data": html, "Charset": "UTF-8"},
                        "Text": {"Data": text, "Charset": "UTF-8"},
                    },
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise EmailDeliveryError(str(e)) from e

        logger.debug(f"SES MessageId: {response['MessageId']}")

    async def send_verification(self, email: str, name: str, token: str) -> bool:
        """Send account verification link."""
        return await self.send(
            to=[email],
            template="verify_email",
            data={
                "name": name,
                "verify_url": f"{self.settings.app_url}/verify-email?token={token}",
                "expires_minutes": self.settings.action_token_expire_minutes,
            },
        )

    async def send_password_reset(self, email: str, token: str) -> bool:
        """Send password reset link."""
        return await self.send(
            to=[email],
            template="password_reset",
            data={
                "reset_url": f"{self.settings.app_url}/reset-password?token={token}",
                "expires_minutes": self.settings.action_token_expire_minutes,
            },
        )
