"""
Blob storage for ticket attachments.

WHAT: Stores attachment bytes and issues short-lived download URLs.

WHY: Attachment records live in the database; their bytes live in a blob
store. Callers only ever hold a signed, expiring URL, never a permanent
link, so access can be re-checked on every request.

HOW: BlobStore is the interface. Two implementations:
- S3BlobStore: boto3 client with presigned get_object URLs
- LocalBlobStore: filesystem directory with HMAC-SHA256 signed URLs
  served by the /blobs endpoint

Every call is bounded by BLOB_TIMEOUT_SECONDS and failures surface as
StorageError.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote, unquote, urlsplit, parse_qs

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from helpdesk.core.config import settings
from helpdesk.core.exceptions import StorageError, SignedUrlError

logger = logging.getLogger(__name__)


# ============================================================================
# Interface
# ============================================================================


class BlobStore(ABC):
    """
    Abstract base class for blob stores.

    WHY: The attachment binder only needs put / delete / signed_url, so
    tests and single-node deployments can swap the S3 bucket for a local
    directory.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds or settings.BLOB_TIMEOUT_SECONDS

    async def _bounded(self, operation: str, ref: str, func, *args, **kwargs):
        """
        Run a blocking storage call in a worker thread with a deadline.

        Raises:
            StorageError: On timeout
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Blob store {operation} timed out for {ref}")
            raise StorageError(
                message=f"Storage {operation} timed out",
                blob_ref=ref,
                timeout_seconds=self.timeout_seconds,
            )

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """
        Store bytes under a path.

        Returns:
            Blob reference to persist on the attachment record
        """
        pass

    @abstractmethod
    async def delete(self, ref: str) -> bool:
        """
        Delete a blob.

        Returns:
            True once the blob is confirmed gone
        """
        pass

    @abstractmethod
    async def signed_url(self, ref: str, ttl_seconds: int) -> str:
        """Issue a download URL valid for ttl_seconds."""
        pass


# ============================================================================
# S3
# ============================================================================


class S3BlobStore(BlobStore):
    """
    S3 (or S3-compatible) bucket store.

    WHY: Production attachments live in a private bucket; presigned URLs
    let the browser download directly without proxying bytes.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        client=None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(timeout_seconds)
        self.bucket = bucket or settings.ATTACHMENT_BUCKET
        self.client = client or boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            region_name=settings.S3_REGION,
            config=Config(
                connect_timeout=self.timeout_seconds,
                read_timeout=self.timeout_seconds,
                retries={"max_attempts": 2},
            ),
        )

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            await self._bounded(
                "upload",
                path,
                self.client.put_object,
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                message="Failed to upload file to storage",
                blob_ref=path,
                error=str(e),
            )
        return path

    async def delete(self, ref: str) -> bool:
        try:
            await self._bounded(
                "delete",
                ref,
                self.client.delete_object,
                Bucket=self.bucket,
                Key=ref,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                message="Failed to delete file from storage",
                blob_ref=ref,
                error=str(e),
            )
        return True

    async def signed_url(self, ref: str, ttl_seconds: int) -> str:
        try:
            return await self._bounded(
                "sign",
                ref,
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": ref},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                message="Failed to generate download URL",
                blob_ref=ref,
                error=str(e),
            )


# ============================================================================
# Local filesystem
# ============================================================================


class LocalBlobStore(BlobStore):
    """
    Filesystem store with HMAC-signed expiring URLs.

    URL format: {base_url}/{quoted ref}?expires={unix seconds}&signature={hex}
    The signature is HMAC-SHA256 over "{ref}:{expires}".

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        root: Optional[str] = None,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(timeout_seconds)
        self.root = Path(root or settings.LOCAL_BLOB_ROOT).resolve()
        self.base_url = (
            base_url or f"{settings.BACKEND_URL}{settings.API_PREFIX}/blobs"
        ).rstrip("/")
        self._secret = (secret or settings.blob_signing_secret).encode()
        self.clock = clock or time.time

    def _path_for(self, ref: str) -> Path:
        """
        Map a ref to a file under root.

        Raises:
            StorageError: If the ref escapes the root directory
        """
        path = (self.root / ref).resolve()
        if self.root not in path.parents:
            raise StorageError(message="Invalid blob reference", blob_ref=ref)
        return path

    def _sign(self, ref: str, expires: int) -> str:
        return hmac.new(self._secret, f"{ref}:{expires}".encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    @staticmethod
    def _unlink(path: Path) -> bool:
        # Already gone counts as deleted
        path.unlink(missing_ok=True)
        return not path.exists()

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._path_for(path)
        try:
            await self._bounded("upload", path, self._write, target, data)
        except OSError as e:
            raise StorageError(
                message="Failed to write file to storage",
                blob_ref=path,
                error=str(e),
            )
        return path

    async def delete(self, ref: str) -> bool:
        target = self._path_for(ref)
        try:
            return await self._bounded("delete", ref, self._unlink, target)
        except OSError as e:
            raise StorageError(
                message="Failed to delete file from storage",
                blob_ref=ref,
                error=str(e),
            )

    async def signed_url(self, ref: str, ttl_seconds: int) -> str:
        expires = int(self.clock()) + int(ttl_seconds)
        signature = self._sign(ref, expires)
        return f"{self.base_url}/{quote(ref)}?expires={expires}&signature={signature}"

    def verify(self, ref: str, expires: int, signature: str) -> None:
        """
        Check a signed URL's parameters.

        Raises:
            SignedUrlError: If the URL has expired or the signature is wrong
        """
        if self.clock() > expires:
            raise SignedUrlError(message="Download link has expired", blob_ref=ref)

        expected = self._sign(ref, expires)
        if not hmac.compare_digest(expected, signature or ""):
            raise SignedUrlError(message="Invalid download link signature", blob_ref=ref)

    async def read(self, ref: str, expires: int, signature: str) -> bytes:
        """
        Return blob bytes for a verified signed request.

        Raises:
            SignedUrlError: Bad or expired signature
            StorageError: Blob missing or unreadable
        """
        self.verify(ref, expires, signature)
        target = self._path_for(ref)
        try:
            return await self._bounded("read", ref, target.read_bytes)
        except FileNotFoundError:
            raise StorageError(message="Blob not found", status_code=404, blob_ref=ref)
        except OSError as e:
            raise StorageError(message="Failed to read file from storage", blob_ref=ref, error=str(e))

    async def resolve(self, url: str) -> bytes:
        """
        Fetch the bytes behind a URL previously issued by signed_url().

        Raises:
            SignedUrlError: If the URL is malformed, expired or tampered with
        """
        parts = urlsplit(url)
        prefix = urlsplit(self.base_url).path.rstrip("/") + "/"
        if not parts.path.startswith(prefix):
            raise SignedUrlError(message="URL was not issued by this store")

        ref = unquote(parts.path[len(prefix):])
        query = parse_qs(parts.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError):
            raise SignedUrlError(message="Malformed download link", blob_ref=ref)

        return await self.read(ref, expires, signature)


# ============================================================================
# Factory
# ============================================================================


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """
    Get or create the configured blob store.

    Returns:
        LocalBlobStore when BLOB_STORE_BACKEND is "local", else S3BlobStore
    """
    global _blob_store

    if _blob_store is None:
        if settings.BLOB_STORE_BACKEND.lower() == "local":
            _blob_store = LocalBlobStore()
        else:
            _blob_store = S3BlobStore()
        logger.info(f"Using {type(_blob_store).__name__} for attachments")

    return _blob_store
