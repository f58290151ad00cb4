"""
E-mail delivery channel for ticket notifications.

WHAT: Provider abstraction plus templates for notification e-mails.

WHY: The notification dispatcher needs exactly one thing from a channel:
send one message to one address and report whether it worked. Keeping
providers behind an interface allows:
1. Resend in production
2. A mock provider in development and tests that records what it "sent"
3. Swapping providers without touching the dispatcher

HOW: EmailProvider.send(EmailMessage) -> EmailResult. Providers report
failure through EmailResult instead of raising for expected API errors;
the dispatcher turns both into DeliveryError records. Bodies are
rendered with Jinja2 (autoescaped) from NotificationTemplates.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple, TYPE_CHECKING
from urllib.parse import urlparse

import httpx
from jinja2 import Environment, DictLoader, select_autoescape

from helpdesk.core.config import settings
from helpdesk.models.notification_rule import NotificationEventType

if TYPE_CHECKING:
    from helpdesk.services.notification_dispatcher import NotificationEvent

logger = logging.getLogger(__name__)


# ============================================================================
# Messages
# ============================================================================


@dataclass
class EmailMessage:
    """
    Represents an email to be sent.

    WHAT: Data container for email content and metadata.
    """

    to_email: str
    """Recipient email address."""

    subject: str
    """Email subject line."""

    html_content: str
    """HTML email body."""

    text_content: Optional[str] = None
    """Plain text fallback."""

    from_email: Optional[str] = None
    """Sender email (defaults to configured sender)."""

    event_type: Optional[NotificationEventType] = None
    """Domain event that produced this message."""

    metadata: Optional[Dict[str, Any]] = None
    """Additional metadata for tracking."""


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    """Whether email was sent successfully."""

    message_id: Optional[str] = None
    """Provider message ID for tracking."""

    error: Optional[str] = None
    """Error message if send failed."""

    provider: Optional[str] = None
    """Which provider was used."""


# ============================================================================
# Email Provider Interface
# ============================================================================


class EmailProvider(ABC):
    """
    Abstract base class for email providers.

    WHY: Provider abstraction allows:
    - Easy switching between providers
    - Testing with mock providers
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        Args:
            message: The email message to send

        Returns:
            EmailResult with success status and provider details
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """
        Check if this provider is properly configured.

        Returns:
            True if API keys/credentials are present
        """
        pass


class ResendProvider(EmailProvider):
    """
    Resend email provider implementation.

    WHY: Simple REST API over httpx with good deliverability.
    """

    API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize Resend provider.

        Args:
            api_key: Resend API key (defaults to settings)
            from_email: Sender address (defaults to settings, then FRONTEND_URL domain)
            timeout_seconds: HTTP timeout (defaults to NOTIFICATION_TIMEOUT_SECONDS)
        """
        self._api_key = api_key or settings.RESEND_API_KEY
        self._default_from = (
            from_email
            or settings.NOTIFICATION_FROM_EMAIL
            or f"Helpdesk <noreply@{self._get_domain()}>"
        )
        self._timeout = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS

    def _get_domain(self) -> str:
        """Get domain from FRONTEND_URL for default sender."""
        parsed = urlparse(settings.FRONTEND_URL)
        return parsed.hostname or "localhost"

    def is_configured(self) -> bool:
        """Check if Resend API key is configured."""
        return bool(self._api_key)

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send email via Resend API.

        Args:
            message: Email message to send

        Returns:
            EmailResult with send status; transport errors are reported,
            not raised
        """
        if not self.is_configured():
            return EmailResult(
                success=False,
                error="Resend API key not configured",
                provider="resend",
            )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self.API_URL,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": message.from_email or self._default_from,
                        "to": [message.to_email],
                        "subject": message.subject,
                        "html": message.html_content,
                        "text": message.text_content,
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Resend send error: {e}")
            return EmailResult(
                success=False,
                error=str(e) or type(e).__name__,
                provider="resend",
            )

        if response.status_code in (200, 201):
            data = response.json()
            return EmailResult(
                success=True,
                message_id=data.get("id"),
                provider="resend",
            )

        return EmailResult(
            success=False,
            error=f"Resend API error: {response.status_code} - {response.text}",
            provider="resend",
        )


class MockEmailProvider(EmailProvider):
    """
    Mock email provider for testing and development.

    WHY: Allows exercising notification flows without sending real emails.
    Logs emails instead of sending them.
    """

    sent_emails: List[EmailMessage] = []
    """Class-level list to track sent emails for testing."""

    def is_configured(self) -> bool:
        """Mock provider is always configured."""
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Mock send - logs email instead of sending.

        Returns:
            Always returns success
        """
        event = message.event_type.value if message.event_type else "none"
        logger.info(
            f"[MOCK EMAIL] To: {message.to_email}, "
            f"Subject: {message.subject}, "
            f"Event: {event}"
        )

        # Track for testing
        MockEmailProvider.sent_emails.append(message)

        return EmailResult(
            success=True,
            message_id=f"mock-{datetime.utcnow().timestamp()}",
            provider="mock",
        )

    @classmethod
    def clear_sent_emails(cls):
        """Clear sent emails list (for test cleanup)."""
        cls.sent_emails = []


# ============================================================================
# Templates
# ============================================================================


COMMENT_PREVIEW_LENGTH = 100

_BASE_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ heading }}</title></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #333;">
  <h2>{{ heading }}</h2>
  <p>{{ intro }}</p>
  <h3>{{ ticket_title }}</h3>
  <p><strong>ID:</strong> #{{ ticket_id }}</p>
  <p><strong>{{ actor_label }}:</strong> {{ actor_name or "System" }}</p>
  {% if message %}<p><strong>{{ message_label }}:</strong> {{ message }}</p>{% endif %}
  <a href="{{ ticket_url }}" style="background: {{ button_color }}; color: white; padding: 10px 20px; text-decoration: none; border-radius: 5px;">View Ticket</a>
</body>
</html>
"""

_TEXT_TEMPLATE = """\
{{ heading }}

{{ intro }}
{{ ticket_title }} (#{{ ticket_id }})
{{ actor_label }}: {{ actor_name or "System" }}
{% if message %}{{ message_label }}: {{ message }}
{% endif %}
{{ ticket_url }}
"""


# event type -> (subject prefix, heading, intro, actor label, message label, button color)
_EVENT_COPY: Dict[NotificationEventType, Tuple[str, str, str, str, str, str]] = {
    NotificationEventType.TICKET_CREATED: (
        "New Ticket", "New Ticket Created", "A new ticket was created:",
        "Created by", "Description", "#007bff",
    ),
    NotificationEventType.TICKET_UPDATED: (
        "Ticket Updated", "Ticket Updated", "The ticket was updated:",
        "Updated by", "Changes", "#007bff",
    ),
    NotificationEventType.TICKET_ASSIGNED: (
        "Ticket Assigned", "Ticket Assigned", "A ticket was assigned to you:",
        "Assigned by", "Details", "#28a745",
    ),
    NotificationEventType.TICKET_CLOSED: (
        "Ticket Closed", "Ticket Closed", "The ticket was closed:",
        "Closed by", "Resolution", "#6c757d",
    ),
    NotificationEventType.COMMENT_ADDED: (
        "New Comment", "New Comment", "A new comment was added to the ticket:",
        "Comment by", "Comment", "#007bff",
    ),
    NotificationEventType.TICKET_REOPENED: (
        "Ticket Reopened", "Ticket Reopened", "The ticket was reopened:",
        "Reopened by", "Details", "#fd7e14",
    ),
    NotificationEventType.TICKET_DUPLICATED: (
        "Ticket Marked as Duplicate", "Ticket Marked as Duplicate",
        "The ticket was closed as a duplicate:",
        "Marked by", "Details", "#6c757d",
    ),
}


def truncate(text: str, length: int = COMMENT_PREVIEW_LENGTH, suffix: str = "...") -> str:
    """Cut text to length characters, appending suffix when cut."""
    if len(text) <= length:
        return text
    return text[:length] + suffix


class NotificationTemplates:
    """
    Renders subject, HTML and text bodies for notification events.

    HOW: One shared Jinja2 layout; per-event copy comes from _EVENT_COPY.
    Autoescaping keeps ticket titles and comment bodies from injecting
    markup.
    """

    _env = Environment(
        loader=DictLoader({"notification.html": _BASE_TEMPLATE, "notification.txt": _TEXT_TEMPLATE}),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )

    @classmethod
    def ticket_url(cls, ticket_id: int) -> str:
        return f"{settings.FRONTEND_URL}/tickets/{ticket_id}"

    @classmethod
    def render(cls, event: "NotificationEvent") -> Tuple[str, str, str]:
        """
        Render an event.

        Args:
            event: Notification event

        Returns:
            Tuple of (subject, html, text)
        """
        prefix, heading, intro, actor_label, message_label, color = _EVENT_COPY.get(
            event.type, _EVENT_COPY[NotificationEventType.TICKET_UPDATED]
        )

        message = event.message or ""
        if event.type == NotificationEventType.COMMENT_ADDED:
            message = truncate(message)

        context = {
            "heading": heading,
            "intro": intro,
            "ticket_title": event.ticket_title,
            "ticket_id": event.ticket_id,
            "actor_label": actor_label,
            "actor_name": event.actor_name,
            "message_label": message_label,
            "message": message,
            "ticket_url": cls.ticket_url(event.ticket_id),
            "button_color": color,
        }

        subject = f"{prefix}: {event.ticket_title}"
        html = cls._env.get_template("notification.html").render(**context)
        text = cls._env.get_template("notification.txt").render(**context)
        return subject, html, text


# ============================================================================
# Module-level convenience functions
# ============================================================================


_delivery_channel: Optional[EmailProvider] = None


def get_delivery_channel() -> EmailProvider:
    """
    Get or create the global delivery channel.

    Returns:
        ResendProvider when RESEND_API_KEY is set, else MockEmailProvider
    """
    global _delivery_channel

    if _delivery_channel is None:
        if settings.RESEND_API_KEY:
            _delivery_channel = ResendProvider()
        else:
            # Use mock provider in development/testing
            logger.warning("No email provider configured, using mock provider")
            _delivery_channel = MockEmailProvider()

    return _delivery_channel


def set_delivery_channel(channel: Optional[EmailProvider]) -> None:
    """Replace the global delivery channel (None resets to auto-detection)."""
    global _delivery_channel
    _delivery_channel = channel
