"""
NeighborLink Backend — Blob Storage
====================================

What:  Bucketed object storage for avatars and offer images.
How:   Each bucket is a directory under `settings.storage_root`; objects are
       written with aiofiles and served back by the /storage route, so
       `public_url()` is deterministic and needs no lookup.
Who:   Used by the offer and profile services.

Object Paths:
    avatars/<user_id>/avatar.<ext>
    offer-images/<user_id>/offer-<timestamp>.jpg

Validation (before any write):
    - size ≤ settings.max_image_size (10 MB)
    - declared content type in ALLOWED_IMAGE_TYPES
    - the object path resolves inside its bucket
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles

from neighborlink.config import settings
from neighborlink.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

AVATARS_BUCKET = "avatars"
OFFER_IMAGES_BUCKET = "offer-images"
BUCKETS = (AVATARS_BUCKET, OFFER_IMAGES_BUCKET)

# ── Allowed Image Types ───────────────────────────────────────────────────
ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def validate_image(content: bytes, content_type: Optional[str]) -> str:
    """
    Check an uploaded image against the size and type limits.

    Returns the file extension for the declared content type.
    Raises ValidationError naming the limit that was exceeded.
    """
    max_mb = settings.max_image_size / (1024 * 1024)
    if len(content) > settings.max_image_size:
        raise ValidationError(
            message=f"Image must be smaller than {max_mb:.0f}MB",
            field="file",
            context={"max_size_mb": max_mb, "actual_size": len(content)},
        )

    normalized = (content_type or "").lower()
    if normalized not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(
            message="Please upload a JPEG, PNG or WebP image",
            field="file",
            context={"content_type": content_type, "allowed": sorted(ALLOWED_IMAGE_TYPES)},
        )
    return ALLOWED_IMAGE_TYPES[normalized]


class BlobStorage:
    """
    Local bucket storage with public URLs.

    Lifecycle of an upload:
        1. Caller validates the image (validate_image)
        2. upload() resolves bucket/path and rejects traversal
        3. Existing object → FileStorageError unless overwrite=True
        4. Bytes are written asynchronously; the public URL is returned
    """

    def __init__(self, storage_root: Optional[str] = None, public_base_url: Optional[str] = None):
        """
        Args:
            storage_root:    Override the default storage path (used in tests).
            public_base_url: Override the URL prefix objects are served under.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.public_base_url = (public_base_url or settings.public_storage_url).rstrip("/")

    def ensure_buckets(self) -> None:
        """Create the bucket directories. Idempotent; called at startup."""
        for bucket in BUCKETS:
            (self.storage_root / bucket).mkdir(parents=True, exist_ok=True)
        logger.info("Blob storage ready at %s", self.storage_root)

    def resolve(self, bucket: str, path: str) -> Path:
        """Absolute filesystem path of an object, refusing paths outside the bucket."""
        if bucket not in BUCKETS:
            raise FileStorageError(
                message=f"Unknown storage bucket '{bucket}'",
                context={"bucket": bucket},
            )
        bucket_root = (self.storage_root / bucket).resolve()
        target = (bucket_root / path).resolve()
        if target == bucket_root or bucket_root not in target.parents:
            raise FileStorageError(
                message="Invalid object path",
                context={"bucket": bucket, "path": path},
            )
        return target

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{bucket}/{path.lstrip('/')}"

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        overwrite: bool = False,
    ) -> str:
        """
        Write `content` to `bucket/path` and return its public URL.

        Raises:
            FileStorageError if the object exists and overwrite is False,
            or the write fails at the OS level.
        """
        target = self.resolve(bucket, path)
        if target.exists() and not overwrite:
            raise FileStorageError(
                message="An object already exists at this path",
                context={"bucket": bucket, "path": path},
            )

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store %s/%s: %s", bucket, path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"bucket": bucket, "path": path, "os_error": str(e)},
            )

        logger.info("Stored %s/%s (%d bytes)", bucket, path, len(content))
        return self.public_url(bucket, path)

    async def read(self, bucket: str, path: str) -> bytes:
        target = self.resolve(bucket, path)
        if not target.is_file():
            raise FileStorageError(
                message="Object not found",
                context={"bucket": bucket, "path": path},
            )
        async with aiofiles.open(target, "rb") as f:
            return await f.read()

    async def remove(self, bucket: str, paths: Iterable[str]) -> List[str]:
        """
        Delete objects; missing ones are skipped.

        Returns the paths that were actually removed. Failures are logged,
        not raised: removal only ever cleans up after a replacement upload.
        """
        removed = []
        for path in paths:
            try:
                target = self.resolve(bucket, path)
                if target.exists():
                    os.remove(target)
                    removed.append(path)
            except (OSError, FileStorageError) as e:
                logger.warning("Failed to remove %s/%s: %s", bucket, path, str(e))
        return removed

    def path_from_url(self, bucket: str, url: Optional[str]) -> Optional[str]:
        """Inverse of public_url(); None for URLs that are not ours."""
        if not url:
            return None
        prefix = f"{self.public_base_url}/{bucket}/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):].split("?", 1)[0]


# ── Singleton Instance ────────────────────────────────────────────────────
blob_storage = BlobStorage()
