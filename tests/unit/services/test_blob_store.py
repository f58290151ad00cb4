"""
Unit tests for blob stores.

WHAT: LocalBlobStore signing and S3BlobStore error mapping.

WHY: Signed URLs are the only credential for a download, so expiry and
tamper detection must hold. Storage failures must always surface as
StorageError.

HOW: LocalBlobStore gets an injectable clock so expiry is tested without
sleeping; S3BlobStore gets a MagicMock boto3 client.
"""

import time
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from helpdesk.core.config import settings
from helpdesk.core.exceptions import StorageError, SignedUrlError
from helpdesk.services import blob_store as blob_store_module
from helpdesk.services.blob_store import LocalBlobStore, S3BlobStore, get_blob_store


class FakeClock:
    """Settable time source."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def local_store(tmp_path, clock):
    return LocalBlobStore(
        root=str(tmp_path / "blobs"),
        base_url="http://files.test/api/blobs",
        secret="unit-secret",
        clock=clock,
    )


class TestLocalBlobStore:

    @pytest.mark.asyncio
    async def test_put_and_resolve(self, local_store):
        ref = await local_store.put("3/100-report.pdf", b"%PDF", "application/pdf")
        url = await local_store.signed_url(ref, 300)

        assert ref == "3/100-report.pdf"
        assert url.startswith("http://files.test/api/blobs/3/100-report.pdf?expires=")
        assert await local_store.resolve(url) == b"%PDF"

    @pytest.mark.asyncio
    async def test_expired_url_rejected(self, local_store, clock):
        ref = await local_store.put("3/1-a.txt", b"x", "text/plain")
        url = await local_store.signed_url(ref, 60)

        clock.now += 61

        with pytest.raises(SignedUrlError, match="expired"):
            await local_store.resolve(url)

    @pytest.mark.asyncio
    async def test_url_valid_until_expiry(self, local_store, clock):
        ref = await local_store.put("3/1-a.txt", b"x", "text/plain")
        url = await local_store.signed_url(ref, 60)

        clock.now += 60

        assert await local_store.resolve(url) == b"x"

    @pytest.mark.asyncio
    async def test_tampered_signature_rejected(self, local_store):
        ref = await local_store.put("3/1-a.txt", b"x", "text/plain")
        url = await local_store.signed_url(ref, 60)

        with pytest.raises(SignedUrlError):
            await local_store.resolve(url[:-4] + "0000")

    @pytest.mark.asyncio
    async def test_signature_bound_to_ref(self, local_store):
        await local_store.put("3/1-a.txt", b"x", "text/plain")
        await local_store.put("4/1-secret.txt", b"y", "text/plain")
        url = await local_store.signed_url("3/1-a.txt", 60)

        with pytest.raises(SignedUrlError):
            await local_store.resolve(url.replace("3/1-a.txt", "4/1-secret.txt"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url",
        [
            "http://files.test/api/blobs/3/1-a.txt",
            "http://files.test/api/blobs/3/1-a.txt?expires=soon&signature=abc",
            "http://elsewhere.test/other/3/1-a.txt?expires=1&signature=abc",
        ],
    )
    async def test_malformed_urls_rejected(self, local_store, url):
        with pytest.raises(SignedUrlError):
            await local_store.resolve(url)

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, local_store):
        with pytest.raises(StorageError):
            await local_store.put("../outside.txt", b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, local_store):
        ref = await local_store.put("3/1-a.txt", b"x", "text/plain")

        assert await local_store.delete(ref) is True
        assert await local_store.delete(ref) is True
        assert not (local_store.root / ref).exists()

    @pytest.mark.asyncio
    async def test_read_missing_blob(self, local_store):
        url = await local_store.signed_url("3/never-uploaded.txt", 60)

        with pytest.raises(StorageError) as exc_info:
            await local_store.resolve(url)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_slow_operation_times_out(self, tmp_path):
        store = LocalBlobStore(root=str(tmp_path), secret="s", timeout_seconds=0.05)

        with pytest.raises(StorageError, match="timed out"):
            await store._bounded("upload", "x", time.sleep, 0.5)


class TestS3BlobStore:

    @pytest.fixture
    def s3_client(self):
        return MagicMock()

    @pytest.fixture
    def s3_store(self, s3_client):
        return S3BlobStore(bucket="attachments", client=s3_client)

    @pytest.mark.asyncio
    async def test_put(self, s3_store, s3_client):
        ref = await s3_store.put("9/1-a.txt", b"data", "text/plain")

        assert ref == "9/1-a.txt"
        s3_client.put_object.assert_called_once_with(
            Bucket="attachments", Key="9/1-a.txt", Body=b"data", ContentType="text/plain"
        )

    @pytest.mark.asyncio
    async def test_put_client_error(self, s3_store, s3_client):
        s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchBucket", "Message": "missing"}}, "PutObject"
        )

        with pytest.raises(StorageError):
            await s3_store.put("9/1-a.txt", b"data", "text/plain")

    @pytest.mark.asyncio
    async def test_delete(self, s3_store, s3_client):
        assert await s3_store.delete("9/1-a.txt") is True
        s3_client.delete_object.assert_called_once_with(Bucket="attachments", Key="9/1-a.txt")

    @pytest.mark.asyncio
    async def test_delete_client_error(self, s3_store, s3_client):
        s3_client.delete_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "no"}}, "DeleteObject"
        )

        with pytest.raises(StorageError):
            await s3_store.delete("9/1-a.txt")

    @pytest.mark.asyncio
    async def test_signed_url(self, s3_store, s3_client):
        s3_client.generate_presigned_url.return_value = "https://s3.test/attachments/9/1-a.txt?sig"

        url = await s3_store.signed_url("9/1-a.txt", 120)

        assert url == "https://s3.test/attachments/9/1-a.txt?sig"
        s3_client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "attachments", "Key": "9/1-a.txt"},
            ExpiresIn=120,
        )


class TestGetBlobStore:

    def test_local_backend(self, monkeypatch, tmp_path):
        monkeypatch.setattr(settings, "BLOB_STORE_BACKEND", "local")
        monkeypatch.setattr(settings, "LOCAL_BLOB_ROOT", str(tmp_path))
        monkeypatch.setattr(blob_store_module, "_blob_store", None)

        store = get_blob_store()

        assert isinstance(store, LocalBlobStore)
        assert get_blob_store() is store
