"""
Notification Dispatcher.

WHAT: Turns a committed ticket event into e-mails for the recipients the
notification rules select.

WHY: Notifications are a side effect, never a precondition. The dispatcher
therefore:
1. Runs only after the mutation committed
2. Uses its own database session, so a failure here cannot touch the
   mutation's transaction
3. Records every delivery failure instead of raising it
4. Makes no channel call at all when no enabled rule matches the event

HOW: Rules are read per event type. Their selectors (submitter, assignee,
all_admins, all_employees) resolve against the ticket and the active
profile directory; explicit recipients are added, addresses are
de-duplicated case-insensitively in first-seen order, and the channel is
called once per address with a deadline.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.config import settings
from helpdesk.core.exceptions import DeliveryError
from helpdesk.dao.notification_rule import NotificationRuleDAO
from helpdesk.dao.profile import ProfileDAO
from helpdesk.db.session import AsyncSessionLocal
from helpdesk.models.notification_rule import (
    NotificationEventType,
    NotificationRule,
    RecipientSelector,
)
from helpdesk.models.profile import ProfileRole
from helpdesk.models.ticket import Ticket
from helpdesk.services.email import (
    EmailMessage,
    EmailProvider,
    NotificationTemplates,
    get_delivery_channel,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    """A committed domain event that may notify people."""

    type: NotificationEventType
    ticket_id: int
    ticket_title: str
    actor_name: Optional[str] = None
    message: str = ""
    explicit_recipients: Tuple[str, ...] = ()


@dataclass
class DispatchResult:
    """
    Outcome of one dispatch.

    skipped is True when no enabled rule matched; recipients then stays
    empty and the channel was never called.
    """

    event_type: NotificationEventType
    ticket_id: int
    skipped: bool = False
    recipients: List[str] = field(default_factory=list)
    delivered: List[str] = field(default_factory=list)
    failures: List[DeliveryError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def dedupe_recipients(addresses: Iterable[Optional[str]]) -> List[str]:
    """
    Drop blanks and case-insensitive duplicates, keeping first-seen order.

    The first spelling of an address wins.
    """
    seen: Set[str] = set()
    unique: List[str] = []
    for address in addresses:
        if not address:
            continue
        address = address.strip()
        key = address.lower()
        if not address or key in seen:
            continue
        seen.add(key)
        unique.append(address)
    return unique


class NotificationDispatcher:
    """
    Delivers notification events through the configured channel.

    Example:
        dispatcher = get_dispatcher()
        await session.commit()
        dispatcher.dispatch_in_background(
            NotificationEvent(NotificationEventType.TICKET_CLOSED, ticket.id, ticket.title)
        )
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        channel: Optional[EmailProvider] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Args:
            session_factory: Opens the dispatcher's own sessions
            channel: Delivery channel (defaults to the global one at send time)
            timeout_seconds: Per-send deadline
        """
        self.session_factory = session_factory
        self._channel = channel
        self.timeout_seconds = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._tasks: Set[asyncio.Task] = set()

    @property
    def channel(self) -> EmailProvider:
        return self._channel or get_delivery_channel()

    # =========================================================================
    # Recipient resolution
    # =========================================================================

    async def _resolve_recipients(
        self,
        session: AsyncSession,
        event: NotificationEvent,
        rules: Sequence[NotificationRule],
    ) -> List[str]:
        selectors: List[RecipientSelector] = []
        for rule in rules:
            for selector in rule.selectors:
                if selector not in selectors:
                    selectors.append(selector)

        profile_dao = ProfileDAO(session)
        addresses: List[str] = []

        ticket = None
        if RecipientSelector.SUBMITTER in selectors or RecipientSelector.ASSIGNEE in selectors:
            ticket = await session.get(Ticket, event.ticket_id)

        for selector in selectors:
            if selector == RecipientSelector.SUBMITTER and ticket is not None:
                addresses.extend(await self._active_emails(profile_dao, [ticket.submitter_id]))

            elif selector == RecipientSelector.ASSIGNEE and ticket is not None:
                addresses.extend(await self._active_emails(profile_dao, [ticket.assignee_id]))

            elif selector == RecipientSelector.ALL_ADMINS:
                # WHY: owners administer the system too
                profiles = await profile_dao.list_active_by_roles(
                    [ProfileRole.ADMIN, ProfileRole.OWNER]
                )
                addresses.extend(p.email for p in profiles)

            elif selector == RecipientSelector.ALL_EMPLOYEES:
                profiles = await profile_dao.list_active_by_roles([ProfileRole.EMPLOYEE])
                addresses.extend(p.email for p in profiles)

        addresses.extend(event.explicit_recipients)
        return dedupe_recipients(addresses)

    @staticmethod
    async def _active_emails(profile_dao: ProfileDAO, ids: List[Optional[int]]) -> List[str]:
        profiles = await profile_dao.get_many(ids)
        return [p.email for p in profiles if p.is_active]

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _send_one(
        self,
        channel: EmailProvider,
        event: NotificationEvent,
        address: str,
        rendered: Tuple[str, str, str],
    ) -> Optional[DeliveryError]:
        subject, html, text = rendered
        message = EmailMessage(
            to_email=address,
            subject=subject,
            html_content=html,
            text_content=text,
            event_type=event.type,
            metadata={"ticket_id": event.ticket_id},
        )

        try:
            result = await asyncio.wait_for(channel.send(message), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            reason = f"timed out after {self.timeout_seconds}s"
        except Exception as e:
            # Channel errors are recorded, never raised
            reason = str(e) or type(e).__name__
        else:
            if result.success:
                return None
            reason = result.error or "channel reported failure"

        return DeliveryError(
            message=f"Delivery to {address} failed: {reason}",
            recipient=address,
            ticket_id=event.ticket_id,
            event_type=event.type.value,
        )

    async def dispatch(self, event: NotificationEvent) -> DispatchResult:
        """
        Deliver an event to every recipient its rules select.

        Args:
            event: Committed domain event

        Returns:
            DispatchResult; never raises. Anything that goes wrong, from
            rule lookup to template rendering, is recorded in failures.
        """
        result = DispatchResult(event_type=event.type, ticket_id=event.ticket_id)

        try:
            await self._deliver(event, result)
        except Exception as e:
            # Background tasks have no caller to raise to
            logger.exception(
                f"Dispatch of {event.type.value} for ticket {event.ticket_id} failed: {e}"
            )
            result.failures.append(
                DeliveryError(
                    message="Notification dispatch failed",
                    ticket_id=event.ticket_id,
                    event_type=event.type.value,
                    error=str(e) or type(e).__name__,
                )
            )
        return result

    async def _deliver(self, event: NotificationEvent, result: DispatchResult) -> None:
        try:
            async with self.session_factory() as session:
                rules = await NotificationRuleDAO(session).list_enabled_for(event.type)
                if not rules:
                    result.skipped = True
                    logger.debug(
                        f"No enabled rules for {event.type.value}; ticket {event.ticket_id} "
                        f"notification skipped"
                    )
                    return

                result.recipients = await self._resolve_recipients(session, event, rules)
        except SQLAlchemyError as e:
            logger.error(
                f"Could not resolve recipients for {event.type.value} on ticket "
                f"{event.ticket_id}: {e}"
            )
            result.failures.append(
                DeliveryError(
                    message="Recipient resolution failed",
                    ticket_id=event.ticket_id,
                    event_type=event.type.value,
                    error=str(e),
                )
            )
            return

        if not result.recipients:
            return

        channel = self.channel
        rendered = NotificationTemplates.render(event)

        for address in result.recipients:
            failure = await self._send_one(channel, event, address, rendered)
            if failure is None:
                result.delivered.append(address)
            else:
                logger.warning(f"Notification for ticket {event.ticket_id}: {failure.message}")
                result.failures.append(failure)

        logger.info(
            f"Dispatched {event.type.value} for ticket {event.ticket_id}: "
            f"{len(result.delivered)} delivered, {len(result.failures)} failed"
        )
        return

    # =========================================================================
    # Background scheduling
    # =========================================================================

    def dispatch_in_background(self, event: NotificationEvent) -> asyncio.Task:
        """
        Schedule dispatch without blocking the caller.

        The task is tracked until it finishes so drain() can await it.
        """
        task = asyncio.create_task(self.dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> List[DispatchResult]:
        """Wait for every scheduled dispatch to finish."""
        if not self._tasks:
            return []
        outcomes = await asyncio.gather(*list(self._tasks), return_exceptions=True)
        results = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error(f"Background dispatch crashed: {outcome!r}")
            else:
                results.append(outcome)
        return results


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Get or create the global dispatcher."""
    global _dispatcher

    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()

    return _dispatcher
