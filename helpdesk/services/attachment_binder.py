"""
Attachment Binder.

WHAT: Keeps attachment records and their stored blobs consistent.

WHY: A record must never point at a blob that does not exist, and an
upload whose record failed must not leave an orphan blob behind:
- bind: store blob → insert record; on record failure delete the blob
- unbind: delete blob → delete record; if the blob survives, keep the
  record so the caller can retry
- url_for: a fresh signed URL per call, never persisted

HOW: Composes a BlobStore with TicketAttachmentDAO. The binder commits its
own record changes; authorization is checked by the ticket service first.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.config import settings
from helpdesk.core.exceptions import (
    ValidationError,
    StorageError,
    AttachmentNotFoundError,
    DatabaseError,
)
from helpdesk.dao.ticket import TicketAttachmentDAO
from helpdesk.models.ticket import TicketAttachment
from helpdesk.services.blob_store import BlobStore

logger = logging.getLogger(__name__)


_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass
class UploadedBlob:
    """Bytes and metadata of an incoming upload."""

    filename: str
    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def byte_size(self) -> int:
        return len(self.data)


def build_blob_path(ticket_id: int, filename: str, now: Optional[datetime] = None) -> str:
    """
    Build the storage path for an upload.

    Format: {ticket_id}/{epoch millis}-{filename}, with every character
    outside [a-zA-Z0-9.-] replaced by "_".
    """
    now = now or datetime.utcnow()
    # WHY: utcnow() is naive; compute millis relative to the epoch explicitly
    millis = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    safe_name = _UNSAFE_FILENAME_CHARS.sub("_", filename)
    return f"{ticket_id}/{millis}-{safe_name}"


class AttachmentBinder:
    """
    Binds uploads to tickets.

    Example:
        binder = AttachmentBinder(session, get_blob_store())
        attachment = await binder.bind(ticket.id, principal.profile_id, upload)
        url = await binder.url_for(attachment)
    """

    def __init__(
        self,
        session: AsyncSession,
        store: BlobStore,
        max_bytes: Optional[int] = None,
    ):
        """
        Args:
            session: Async database session
            store: Blob store holding attachment bytes
            max_bytes: Upload size limit (defaults to settings)
        """
        self.session = session
        self.store = store
        self.dao = TicketAttachmentDAO(session)
        self.max_bytes = max_bytes or settings.MAX_ATTACHMENT_BYTES

    async def bind(
        self,
        ticket_id: int,
        uploader_id: int,
        blob: UploadedBlob,
    ) -> TicketAttachment:
        """
        Store an upload and create its attachment record.

        Args:
            ticket_id: Ticket the file belongs to
            uploader_id: Uploading profile
            blob: The upload

        Returns:
            Committed TicketAttachment

        Raises:
            ValidationError: Empty or oversized upload, or missing filename
            StorageError: If the blob could not be stored (no record written)
        """
        if not blob.filename or not blob.filename.strip():
            raise ValidationError(message="Attachment filename is required", ticket_id=ticket_id)

        if blob.byte_size == 0:
            raise ValidationError(message="Attachment is empty", ticket_id=ticket_id)

        if blob.byte_size > self.max_bytes:
            raise ValidationError(
                message=f"Attachment exceeds maximum size of {self.max_bytes // (1024 * 1024)}MB",
                ticket_id=ticket_id,
                byte_size=blob.byte_size,
                max_bytes=self.max_bytes,
            )

        path = build_blob_path(ticket_id, blob.filename)
        ref = await self.store.put(path, blob.data, blob.mime_type)

        try:
            attachment = await self.dao.create(
                ticket_id=ticket_id,
                uploader_id=uploader_id,
                filename=blob.filename,
                blob_ref=ref,
                byte_size=blob.byte_size,
                mime_type=blob.mime_type,
            )
            await self.session.commit()
        except Exception:
            # Clean up storage if the record could not be written
            await self.session.rollback()
            await self._discard_orphan(ref)
            raise

        logger.info(
            f"Attachment {attachment.id} ({blob.byte_size} bytes) bound to ticket "
            f"{ticket_id} by profile {uploader_id}"
        )
        return attachment

    async def _discard_orphan(self, ref: str) -> None:
        try:
            await self.store.delete(ref)
        except StorageError as e:
            logger.error(f"Failed to remove orphaned blob {ref}: {e.message}")

    async def url_for(
        self,
        attachment: TicketAttachment,
        ttl_seconds: Optional[int] = None,
    ) -> Optional[str]:
        """
        Issue a fresh signed download URL.

        Args:
            attachment: Attachment to link to
            ttl_seconds: Validity from now; None means the configured
                default, 0 a link that expires immediately

        Returns:
            URL string, or None if the store could not sign one

        Raises:
            ValidationError: If ttl_seconds is negative
        """
        if ttl_seconds is None:
            ttl_seconds = settings.ATTACHMENT_URL_TTL_SECONDS
        if ttl_seconds < 0:
            raise ValidationError(
                message="URL lifetime must not be negative",
                attachment_id=attachment.id,
                ttl_seconds=ttl_seconds,
            )

        try:
            return await self.store.signed_url(attachment.blob_ref, ttl_seconds)
        except StorageError as e:
            logger.warning(
                f"Could not sign URL for attachment {attachment.id}: {e.message}"
            )
            return None

    async def unbind(self, attachment_id: int) -> bool:
        """
        Delete an attachment's blob, then its record.

        Returns:
            True when both are gone

        Raises:
            AttachmentNotFoundError: If no such attachment exists
            StorageError: If the blob could not be deleted; the record is kept
            DatabaseError: If the record could not be deleted after its blob
                was; the record is kept and must be removed by a retry
        """
        attachment = await self.dao.get_by_id(attachment_id)
        if attachment is None:
            raise AttachmentNotFoundError(attachment_id=attachment_id)

        ticket_id = attachment.ticket_id
        blob_ref = attachment.blob_ref

        deleted = await self.store.delete(blob_ref)
        if not deleted:
            raise StorageError(
                message="Storage did not confirm deletion; attachment kept",
                attachment_id=attachment_id,
                blob_ref=blob_ref,
            )

        try:
            await self.dao.delete(attachment)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            # Blob deletion is idempotent, so a retried unbind clears the record
            logger.error(
                f"Attachment {attachment_id} on ticket {ticket_id} still references "
                f"deleted blob {blob_ref}: {e}"
            )
            raise DatabaseError(
                message="Attachment file was deleted but its record could not be removed",
                attachment_id=attachment_id,
                ticket_id=ticket_id,
            )

        logger.info(f"Attachment {attachment_id} removed from ticket {ticket_id}")
        return True
