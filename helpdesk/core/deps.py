"""
FastAPI dependencies for authentication and service wiring.

WHY: Dependencies provide reusable principal resolution that can be
injected into route handlers, so every endpoint resolves the acting
principal the same way before any core operation runs.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.auth import verify_token, extract_subject
from helpdesk.core.exceptions import AuthenticationError
from helpdesk.core.principal import Principal
from helpdesk.dao.profile import ProfileDAO
from helpdesk.db.session import get_db
from helpdesk.models.profile import Profile
from helpdesk.services.blob_store import BlobStore, get_blob_store
from helpdesk.services.notification_dispatcher import NotificationDispatcher, get_dispatcher
from helpdesk.services.ticket_service import TicketService


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer(auto_error=False)


async def get_current_profile(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """
    Resolve the bearer token to an active profile.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Looks the subject up in the profile directory
    4. Ensures the profile still exists and is active

    Raises:
        AuthenticationError: Missing/invalid token, unknown or inactive profile
    """
    if credentials is None:
        raise AuthenticationError(message="Not authenticated")

    # TokenExpiredError / TokenInvalidError are AuthenticationErrors already
    payload = verify_token(credentials.credentials)
    subject = extract_subject(payload)

    profile_dao = ProfileDAO(db)
    if subject["profile_id"] is not None:
        profile = await profile_dao.get_by_id(subject["profile_id"])
    elif subject["user_id"]:
        profile = await profile_dao.get_by_user_id(subject["user_id"])
    else:
        raise AuthenticationError(message="Invalid token: missing subject")

    if profile is None:
        # WHY: Profile might have been deleted after token was issued
        raise AuthenticationError(message="Profile not found")

    if not profile.is_active:
        raise AuthenticationError(
            message="Profile is inactive",
            profile_id=profile.id,
        )

    return profile


async def get_current_principal(
    profile: Profile = Depends(get_current_profile),
) -> Principal:
    """Immutable principal handed to every core operation."""
    return Principal.from_profile(profile)


def get_notification_dispatcher() -> NotificationDispatcher:
    """Dispatcher dependency (overridden in tests)."""
    return get_dispatcher()


def get_attachment_store() -> BlobStore:
    """Blob store dependency (overridden in tests)."""
    return get_blob_store()


async def get_ticket_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    store: BlobStore = Depends(get_attachment_store),
) -> TicketService:
    """Ticket service bound to the request's session."""
    return TicketService(db, dispatcher=dispatcher, blob_store=store)
