"""
Pydantic schemas for ticket endpoints.

WHAT: Request/response schemas for the ticket API.

WHY: Schemas define API contracts for ticket operations:
1. Validate incoming request data
2. Document API for OpenAPI/Swagger
3. Control which fields are exposed (private notes never leave the
   service for non-staff; blob refs are never exposed, only signed URLs)

HOW: Uses Pydantic v2 with Field validators and from_attributes for
SQLAlchemy integration. Status and priority reuse the model enums.
"""

from datetime import datetime
from typing import List
from pydantic import BaseModel, Field, field_validator

from helpdesk.models.history import HistoryAction
from helpdesk.models.profile import ProfileRole
from helpdesk.models.ticket import TicketStatus, TicketPriority


def _not_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be blank")
    return value.strip()


# ============================================================================
# Profile Reference Schema
# ============================================================================


class ProfileReference(BaseModel):
    """
    Minimal profile info for ticket references.

    WHY: Avoids exposing full profile details while providing what the UI
    shows next to a ticket or comment.
    """

    id: int = Field(..., description="Profile ID")
    email: str = Field(..., description="Profile email")
    full_name: str | None = Field(None, description="Display name")
    role: ProfileRole = Field(..., description="Profile role")

    class Config:
        from_attributes = True


class CategoryReference(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


# ============================================================================
# Ticket Requests
# ============================================================================


class TicketCreate(BaseModel):
    """
    Ticket creation request.

    WHAT: Data for opening a new ticket. The submitter is always the
    caller.
    """

    title: str = Field(..., min_length=1, max_length=500, description="Ticket title")
    description: str = Field(..., min_length=1, description="Problem description")
    priority: TicketPriority = Field(default=TicketPriority.NORMAL, description="Priority")
    category_id: int | None = Field(None, description="Category ID")
    due_date: datetime | None = Field(None, description="Due date")

    @field_validator("title", "description")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        return _not_blank(v)


class TicketStatusChange(BaseModel):
    """
    Status change request.

    WHAT: Target status plus an optional public comment, typically the
    resolution when closing.
    """

    status: TicketStatus = Field(..., description="New status")
    comment: str | None = Field(None, max_length=10000, description="Optional comment")


class TicketDuplicateMark(BaseModel):
    duplicate_of_id: int = Field(..., gt=0, description="ID of the ticket this one duplicates")


class TicketAssign(BaseModel):
    """Assignment request; null unassigns."""

    assignee_id: int | None = Field(None, description="Profile to assign, or null")


class TicketPriorityChange(BaseModel):
    priority: TicketPriority = Field(..., description="New priority")


class TicketDueDateChange(BaseModel):
    due_date: datetime | None = Field(None, description="New due date, or null to clear")


class TicketBulkUpdate(BaseModel):
    """
    Bulk update request.

    WHAT: Fields to apply to every listed ticket. Omitted fields are left
    alone; at least one must be given. Unassigning is not a bulk operation.
    """

    ticket_ids: List[int] = Field(..., min_length=1, description="Tickets to update")
    status: TicketStatus | None = Field(None, description="New status")
    priority: TicketPriority | None = Field(None, description="New priority")
    assignee_id: int | None = Field(None, description="Profile to assign")


# ============================================================================
# Ticket Responses
# ============================================================================


class TicketResponse(BaseModel):
    """
    Ticket response schema.

    WHAT: Ticket data for API responses.
    """

    id: int
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    category_id: int | None = None
    submitter_id: int
    assignee_id: int | None = None
    due_date: datetime | None = None
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    is_overdue: bool = False
    submitter: ProfileReference | None = None
    assignee: ProfileReference | None = None
    category: CategoryReference | None = None

    class Config:
        from_attributes = True


class TicketListResponse(BaseModel):
    """Paginated ticket list."""

    items: List[TicketResponse]
    total: int = Field(..., description="Total visible tickets matching the filters")
    skip: int
    limit: int


class TicketStats(BaseModel):
    """
    Ticket statistics for dashboards.

    WHAT: Counts over the tickets the caller can see.
    """

    total: int = 0
    open: int = 0
    waiting: int = 0
    closed: int = 0
    high_priority: int = 0
    overdue: int = 0
    created_this_week: int = 0
    closed_this_week: int = 0


# ============================================================================
# History
# ============================================================================


class HistoryEntryResponse(BaseModel):
    """One audit trail entry."""

    id: int
    ticket_id: int
    actor_id: int
    action: HistoryAction
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    description: str
    created_at: datetime
    actor: ProfileReference | None = None

    class Config:
        from_attributes = True


# ============================================================================
# Comment Schemas
# ============================================================================


class CommentCreate(BaseModel):
    """
    Comment creation request.

    WHAT: Data for adding a comment to a ticket.

    WHY: is_private marks a staff-only note; non-staff are rejected.
    """

    content: str = Field(..., min_length=1, max_length=10000, description="Comment content")
    is_private: bool = Field(default=False, description="Staff-only note")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return _not_blank(v)


class CommentResponse(BaseModel):
    id: int
    ticket_id: int
    author_id: int
    content: str
    is_private: bool
    created_at: datetime
    author: ProfileReference | None = None

    class Config:
        from_attributes = True


# ============================================================================
# Attachment Schemas
# ============================================================================


class AttachmentResponse(BaseModel):
    """
    Attachment response schema.

    WHY: The blob ref stays internal; clients ask for a signed URL.
    """

    id: int
    ticket_id: int
    uploader_id: int
    filename: str
    byte_size: int
    mime_type: str
    created_at: datetime

    class Config:
        from_attributes = True


class AttachmentUrlResponse(BaseModel):
    attachment_id: int
    url: str
    expires_in: int = Field(..., description="Seconds until the URL expires")


# ============================================================================
# Bulk Update Responses
# ============================================================================


class BulkUpdateItem(BaseModel):
    """Outcome for one ticket of a bulk update."""

    ticket_id: int
    ok: bool
    applied: List[str] = Field(default_factory=list, description="Fields now at their target value")
    error: str | None = Field(None, description="Error type that stopped this ticket")
    message: str | None = None
    status_code: int | None = None


class BulkUpdateResponse(BaseModel):
    results: List[BulkUpdateItem]
    succeeded: int
    failed: int
