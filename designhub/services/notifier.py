"""
Email notifications.

Services call the four ``notify_*`` helpers after a command has committed.
Delivery is best-effort: a failing provider is logged and never fails the
command that triggered it.

Providers:
- ``LogNotifier`` writes each message to the log (default)
- ``CapturingNotifier`` also records messages in memory (tests)
- ``MailgunNotifier`` posts to the Mailgun messages API with httpx
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from designhub.config import settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_email(self, to: str, subject: str, body: str) -> None: ...


@dataclass(frozen=True)
class SentEmail:
    to: str
    subject: str
    body: str


class LogNotifier:
    """Logs every message instead of delivering it."""

    async def send_email(self, to: str, subject: str, body: str) -> None:
        logger.info(f"📧 Email to {to}: {subject}")
        logger.debug(body)


class CapturingNotifier(LogNotifier):
    """LogNotifier that also records every message (tests)."""

    def __init__(self) -> None:
        self.sent: list[SentEmail] = []

    async def send_email(self, to: str, subject: str, body: str) -> None:
        self.sent.append(SentEmail(to=to, subject=subject, body=body))
        await super().send_email(to, subject, body)


class MailgunNotifier:
    """
    Mailgun HTTP API client.

    Holds one long-lived ``httpx.AsyncClient``; call :meth:`close` from the
    application lifespan.
    """

    def __init__(
        self,
        api_key: str,
        domain: str,
        base_url: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.domain = domain
        self.base_url = (base_url or settings.mailgun_base_url).rstrip("/")
        self.sender = sender or settings.email_from
        self._api_key = api_key
        self._timeout = float(timeout or settings.email_timeout)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                auth=("api", self._api_key),
                timeout=httpx.Timeout(self._timeout, connect=5.0),
            )
        return self._client

    async def send_email(self, to: str, subject: str, body: str) -> None:
        response = await self.client.post(
            f"{self.base_url}/{self.domain}/messages",
            data={"from": self.sender, "to": to, "subject": subject, "text": body},
        )
        response.raise_for_status()
        logger.info(f"📧 Mailgun accepted email to {to}: {subject}")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Message helpers
# ---------------------------------------------------------------------------


async def _deliver(notifier: Notifier, to: str, subject: str, body: str) -> bool:
    try:
        await notifier.send_email(to, subject, body)
        return True
    except Exception as e:
        logger.warning(f"⚠️ Failed to send email '{subject}' to {to}: {e}")
        return False


async def notify_merge_request_created(
    notifier: Notifier, to: str, project_name: str, title: str, url: str
) -> bool:
    body = (
        f"A new merge request has been created in {project_name}.\n\n"
        f"Title: {title}\n\n"
        f"View and review: {url}\n"
    )
    return await _deliver(notifier, to, f"New Merge Request: {title}", body)


async def notify_merge_request_approved(
    notifier: Notifier, to: str, project_name: str, title: str
) -> bool:
    body = (
        f"Your merge request has been approved in {project_name}.\n\n"
        f"Title: {title}\n"
    )
    return await _deliver(notifier, to, f"Merge Request Approved: {title}", body)


async def notify_changes_requested(
    notifier: Notifier, to: str, project_name: str, title: str, comment: str | None
) -> bool:
    body = (
        f"Changes were requested on your merge request in {project_name}.\n\n"
        f"Title: {title}\n"
    )
    if comment:
        body += f"\nComment: {comment}\n"
    return await _deliver(notifier, to, f"Changes Requested: {title}", body)


async def notify_invitation(
    notifier: Notifier,
    to: str,
    project_name: str,
    inviter_name: str,
    invitation_token: str,
    project_id: str,
) -> bool:
    accept_url = (
        f"{settings.frontend_url.rstrip('/')}/invite"
        f"?invite_token={invitation_token}&project_id={project_id}"
    )
    body = (
        f'{inviter_name} has invited you to join the project "{project_name}".\n\n'
        f"Accept the invitation: {accept_url}\n\n"
        f"This invitation expires in {settings.invitation_ttl_days} days.\n"
        "If you didn't expect this invitation, you can safely ignore this email.\n"
    )
    return await _deliver(notifier, to, f"Invitation to join {project_name}", body)


# ---------------------------------------------------------------------------
# Process-wide notifier
# ---------------------------------------------------------------------------

_notifier: Notifier | None = None


def create_notifier() -> Notifier:
    if settings.email_provider == "mailgun":
        if settings.mailgun_api_key and settings.mailgun_domain:
            return MailgunNotifier(settings.mailgun_api_key, settings.mailgun_domain)
        logger.warning("⚠️ Mailgun selected but DESIGNHUB_MAILGUN_API_KEY/DOMAIN unset; logging emails instead")
    return LogNotifier()


def get_notifier() -> Notifier:
    """Return the process-wide notifier, creating it on first use."""
    global _notifier
    if _notifier is None:
        _notifier = create_notifier()
    return _notifier


async def close_notifier() -> None:
    """Close the singleton notifier (call from FastAPI lifespan shutdown)."""
    global _notifier
    if isinstance(_notifier, MailgunNotifier):
        await _notifier.close()
    _notifier = None
