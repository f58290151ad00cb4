"""
Ticket API endpoints.

WHAT: RESTful API for the support ticket lifecycle.

WHY: Each endpoint is a thin adapter:
1. Resolve the principal from the bearer token
2. Call the matching TicketService operation
3. Convert ORM rows into response schemas

Authorization, transitions, history and notifications all live in the
service, so the HTTP layer cannot bypass them.

HOW: FastAPI router. Single-record reads answer 404 both for missing and
invisible records, so responses never reveal that a record exists.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status, UploadFile, File
from sqlalchemy import inspect

from helpdesk.core.config import settings
from helpdesk.core.deps import get_current_principal, get_ticket_service
from helpdesk.core.exceptions import (
    TicketNotFoundError,
    AttachmentNotFoundError,
    StorageError,
    ValidationError,
)
from helpdesk.core.principal import Principal
from helpdesk.models.ticket import Ticket, TicketStatus, TicketPriority
from helpdesk.schemas.ticket import (
    TicketCreate,
    TicketStatusChange,
    TicketDuplicateMark,
    TicketAssign,
    TicketPriorityChange,
    TicketDueDateChange,
    TicketBulkUpdate,
    BulkUpdateItem,
    BulkUpdateResponse,
    TicketResponse,
    TicketListResponse,
    TicketStats,
    HistoryEntryResponse,
    CommentCreate,
    CommentResponse,
    AttachmentResponse,
    AttachmentUrlResponse,
    ProfileReference,
    CategoryReference,
)
from helpdesk.services.attachment_binder import UploadedBlob
from helpdesk.services.ticket_service import TicketService


router = APIRouter(prefix="/tickets", tags=["tickets"])


def _ticket_to_response(ticket: Ticket) -> TicketResponse:
    """
    Convert Ticket model to TicketResponse schema.

    WHY: Relationships are only read when already loaded; a lazy load
    would fail inside the async session.
    """
    loaded = inspect(ticket).dict

    def reference(attr_name: str, schema):
        value = loaded.get(attr_name)
        return schema.model_validate(value) if value is not None else None

    return TicketResponse(
        id=ticket.id,
        title=ticket.title,
        description=ticket.description,
        status=ticket.status,
        priority=ticket.priority,
        category_id=ticket.category_id,
        submitter_id=ticket.submitter_id,
        assignee_id=ticket.assignee_id,
        due_date=ticket.due_date,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
        closed_at=ticket.closed_at,
        is_overdue=ticket.is_overdue,
        submitter=reference("submitter", ProfileReference),
        assignee=reference("assignee", ProfileReference),
        category=reference("category", CategoryReference),
    )


# ============================================================================
# Ticket Endpoints
# ============================================================================


@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create ticket",
)
async def create_ticket(
    data: TicketCreate,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    """
    Create a new support ticket.

    Any role may create tickets; the caller becomes the submitter.

    Raises:
        ValidationError (400): Blank title/description
        CategoryNotFoundError (404): Unknown category
    """
    ticket = await service.create_ticket(
        principal,
        title=data.title,
        description=data.description,
        priority=data.priority,
        category_id=data.category_id,
        due_date=data.due_date,
    )
    return _ticket_to_response(ticket)


@router.get(
    "",
    response_model=TicketListResponse,
    summary="List tickets",
)
async def list_tickets(
    skip: int = Query(default=0, ge=0, description="Number of items to skip"),
    limit: int = Query(default=20, ge=1, le=100, description="Maximum items to return"),
    status_filter: Optional[TicketStatus] = Query(default=None, alias="status"),
    priority_filter: Optional[TicketPriority] = Query(default=None, alias="priority"),
    category_id: Optional[int] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    assigned_to_me: bool = Query(default=False, description="Only tickets assigned to me"),
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketListResponse:
    """
    List tickets visible to the caller, newest first.
    """
    tickets, total = await service.list_tickets(
        principal,
        skip=skip,
        limit=limit,
        status=status_filter,
        priority=priority_filter,
        category_id=category_id,
        search=search,
        assigned_to_me=assigned_to_me,
    )

    return TicketListResponse(
        items=[_ticket_to_response(t) for t in tickets],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=TicketStats,
    summary="Get ticket statistics",
)
async def get_ticket_stats(
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketStats:
    """Dashboard counts over the caller's visible tickets."""
    stats = await service.ticket_stats(principal)
    return TicketStats(**stats)


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket",
)
async def get_ticket(
    ticket_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    """
    Get a single ticket.

    Raises:
        TicketNotFoundError (404): Missing or not visible
    """
    ticket = await service.get_ticket(principal, ticket_id)
    if ticket is None:
        raise TicketNotFoundError(ticket_id=ticket_id)
    return _ticket_to_response(ticket)


# ============================================================================
# Lifecycle Endpoints
# ============================================================================


@router.patch(
    "/{ticket_id}/status",
    response_model=TicketResponse,
    summary="Change ticket status",
)
async def change_ticket_status(
    ticket_id: int,
    data: TicketStatusChange,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    """
    Change ticket status (open ⇄ waiting, → closed).

    Raises:
        AuthorizationError (403): Caller may not triage this ticket
        InvalidTransitionError (409): Same status or leaving closed
    """
    ticket = await service.change_status(principal, ticket_id, data.status, comment=data.comment)
    return _ticket_to_response(ticket)


@router.post(
    "/{ticket_id}/reopen",
    response_model=TicketResponse,
    summary="Reopen ticket",
)
async def reopen_ticket(
    ticket_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    """Reopen a closed ticket."""
    ticket = await service.reopen(principal, ticket_id)
    return _ticket_to_response(ticket)


@router.post(
    "/{ticket_id}/duplicate",
    response_model=TicketResponse,
    summary="Mark ticket as duplicate",
)
async def mark_ticket_duplicate(
    ticket_id: int,
    data: TicketDuplicateMark,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    """Close a ticket as a duplicate of another one."""
    ticket = await service.mark_duplicate(principal, ticket_id, data.duplicate_of_id)
    return _ticket_to_response(ticket)


@router.patch(
    "/{ticket_id}/assign",
    response_model=TicketResponse,
    summary="Assign ticket",
)
async def assign_ticket(
    ticket_id: int,
    data: TicketAssign,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    """
    Assign or unassign a ticket (admin/owner only).

    Raises:
        AuthorizationError (403): Caller is not admin/owner
        ValidationError (400): Assignee is not an active staff profile
    """
    ticket = await service.assign(principal, ticket_id, data.assignee_id)
    return _ticket_to_response(ticket)


@router.patch(
    "/{ticket_id}/priority",
    response_model=TicketResponse,
    summary="Set ticket priority",
)
async def set_ticket_priority(
    ticket_id: int,
    data: TicketPriorityChange,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    ticket = await service.set_priority(principal, ticket_id, data.priority)
    return _ticket_to_response(ticket)


@router.patch(
    "/{ticket_id}/due-date",
    response_model=TicketResponse,
    summary="Set ticket due date",
)
async def set_ticket_due_date(
    ticket_id: int,
    data: TicketDueDateChange,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    ticket = await service.set_due_date(principal, ticket_id, data.due_date)
    return _ticket_to_response(ticket)


@router.post(
    "/bulk",
    response_model=BulkUpdateResponse,
    summary="Bulk update tickets",
)
async def bulk_update_tickets(
    data: TicketBulkUpdate,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> BulkUpdateResponse:
    """
    Apply status, priority and/or assignee to many tickets.

    WHY: Answers 200 even when some tickets were rejected; each result
    carries the error that stopped its ticket.

    Raises:
        ValidationError (400): No field given, or too many tickets
    """
    outcomes = await service.bulk_update(
        principal,
        data.ticket_ids,
        status=data.status,
        priority=data.priority,
        assignee_id=data.assignee_id,
    )

    results = []
    for outcome in outcomes:
        error = outcome.error.to_dict() if outcome.error else {}
        results.append(
            BulkUpdateItem(
                ticket_id=outcome.ticket_id,
                ok=outcome.ok,
                applied=outcome.applied,
                error=error.get("error"),
                message=error.get("message"),
                status_code=error.get("status_code"),
            )
        )

    succeeded = sum(1 for r in results if r.ok)
    return BulkUpdateResponse(
        results=results,
        succeeded=succeeded,
        failed=len(results) - succeeded,
    )


@router.get(
    "/{ticket_id}/history",
    response_model=List[HistoryEntryResponse],
    summary="Get ticket history",
)
async def get_ticket_history(
    ticket_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> List[HistoryEntryResponse]:
    """Audit trail, newest first. Empty when the ticket is not visible."""
    entries = await service.list_history(principal, ticket_id)
    return [HistoryEntryResponse.model_validate(e) for e in entries]


# ============================================================================
# Comment Endpoints
# ============================================================================


@router.get(
    "/{ticket_id}/comments",
    response_model=List[CommentResponse],
    summary="List comments",
)
async def list_comments(
    ticket_id: int,
    include_private: bool = Query(default=True, description="Include staff notes (staff only)"),
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> List[CommentResponse]:
    """Comments the caller may read, oldest first."""
    comments = await service.list_comments(principal, ticket_id, include_private=include_private)
    return [CommentResponse.model_validate(c) for c in comments]


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add comment",
)
async def add_comment(
    ticket_id: int,
    data: CommentCreate,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> CommentResponse:
    """
    Add a comment or staff note to a ticket.

    Raises:
        AuthorizationError (403): Ticket not visible, or private note by non-staff
    """
    comment = await service.add_comment(
        principal, ticket_id, data.content, is_private=data.is_private
    )
    return CommentResponse.model_validate(comment)


# ============================================================================
# Attachment Endpoints
# ============================================================================


@router.get(
    "/{ticket_id}/attachments",
    response_model=List[AttachmentResponse],
    summary="List attachments",
)
async def list_attachments(
    ticket_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> List[AttachmentResponse]:
    attachments = await service.list_attachments(principal, ticket_id)
    return [AttachmentResponse.model_validate(a) for a in attachments]


@router.post(
    "/{ticket_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload attachment",
)
async def upload_attachment(
    ticket_id: int,
    file: UploadFile = File(..., description="File to upload"),
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> AttachmentResponse:
    """
    Upload a file to a ticket.

    Raises:
        ValidationError (400): Empty or oversized file
        StorageError (502): Blob store failure (no record written)
    """
    # Never buffer more than one byte past the limit
    max_bytes = settings.MAX_ATTACHMENT_BYTES
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(
            message=f"Attachment exceeds maximum size of {max_bytes // (1024 * 1024)}MB",
            ticket_id=ticket_id,
            max_bytes=max_bytes,
        )

    blob = UploadedBlob(
        filename=file.filename or "",
        data=data,
        mime_type=file.content_type or "application/octet-stream",
    )
    attachment = await service.attach(principal, ticket_id, blob)
    return AttachmentResponse.model_validate(attachment)


@router.get(
    "/{ticket_id}/attachments/{attachment_id}/url",
    response_model=AttachmentUrlResponse,
    summary="Get attachment download URL",
)
async def get_attachment_url(
    ticket_id: int,
    attachment_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> AttachmentUrlResponse:
    """
    Issue a fresh signed download URL.

    Raises:
        AttachmentNotFoundError (404): Missing, not visible, or not on this ticket
        StorageError (502): Store could not sign a URL
    """
    attachments = await service.list_attachments(principal, ticket_id)
    if not any(a.id == attachment_id for a in attachments):
        raise AttachmentNotFoundError(attachment_id=attachment_id)

    ttl = settings.ATTACHMENT_URL_TTL_SECONDS
    url = await service.get_attachment_url(principal, attachment_id, ttl)
    if url is None:
        raise StorageError(message="Download link is unavailable", attachment_id=attachment_id)

    return AttachmentUrlResponse(attachment_id=attachment_id, url=url, expires_in=ttl)


@router.delete(
    "/{ticket_id}/attachments/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete attachment",
)
async def delete_attachment(
    ticket_id: int,
    attachment_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
) -> None:
    """
    Delete an attachment and its stored file.

    Raises:
        AuthorizationError (403): Not a staff mutator or the uploader
        StorageError (502): File could not be deleted; attachment kept
    """
    attachments = await service.list_attachments(principal, ticket_id)
    if not any(a.id == attachment_id for a in attachments):
        raise AttachmentNotFoundError(attachment_id=attachment_id)

    await service.detach(principal, attachment_id)
