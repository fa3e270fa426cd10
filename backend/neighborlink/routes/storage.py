"""
NeighborLink Backend — Storage Route
=====================================

What:  Serves public blob URLs (`/storage/<bucket>/<path>`).
How:   Paths are resolved through BlobStorage, which refuses unknown
       buckets and anything outside the bucket directory; both are
       reported as 404. Files are streamed from disk.
"""

import mimetypes

from fastapi import APIRouter
from fastapi.responses import FileResponse

from neighborlink.exceptions import FileStorageError, NotFoundError
from neighborlink.store.blob import blob_storage

router = APIRouter(prefix="/storage", tags=["Storage"])


@router.get("/{bucket}/{path:path}")
async def get_object(bucket: str, path: str) -> FileResponse:
    try:
        target = blob_storage.resolve(bucket, path)
    except FileStorageError:
        raise NotFoundError(resource="object", resource_id=f"{bucket}/{path}")
    if not target.is_file():
        raise NotFoundError(resource="object", resource_id=f"{bucket}/{path}")

    media_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
    return FileResponse(
        target,
        media_type=media_type,
        headers={"Cache-Control": "public, max-age=3600"},
    )
