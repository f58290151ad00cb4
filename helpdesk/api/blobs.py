"""
Signed blob download endpoint.

WHAT: Serves attachment bytes from the local blob store.

WHY: The local store has no CDN in front of it, so URLs issued by
LocalBlobStore.signed_url() point here. The signature and expiry are the
only credentials; no bearer token is required, exactly like a presigned
S3 URL.
"""

import mimetypes

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from helpdesk.core.deps import get_attachment_store
from helpdesk.core.exceptions import StorageError
from helpdesk.services.blob_store import BlobStore, LocalBlobStore


router = APIRouter(prefix="/blobs", tags=["blobs"])


@router.get(
    "/{ref:path}",
    summary="Download a blob via signed URL",
    response_class=Response,
)
async def download_blob(
    ref: str,
    expires: int = Query(..., description="Expiry as unix seconds"),
    signature: str = Query(..., description="HMAC-SHA256 signature"),
    store: BlobStore = Depends(get_attachment_store),
) -> Response:
    """
    Return blob bytes after verifying the signed URL.

    Raises:
        SignedUrlError (403): Expired or tampered URL
        StorageError (404/502): Blob missing, or store is not local
    """
    if not isinstance(store, LocalBlobStore):
        raise StorageError(
            message="Signed downloads are served by the storage provider",
            status_code=404,
        )

    data = await store.read(ref, expires, signature)
    media_type = mimetypes.guess_type(ref)[0] or "application/octet-stream"
    filename = ref.rsplit("/", 1)[-1]

    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
