"""
NeighborLink Backend — Blob Storage Unit Tests
===============================================

What we test:
    ✅ Image validation: size limit and allowed content types
    ✅ Upload writes bytes and returns the public URL
    ✅ Existing objects are protected unless overwrite=True
    ✅ Path traversal and unknown buckets are rejected
    ✅ remove() skips missing objects
    ✅ path_from_url() inverts public_url()
"""

import os

import pytest

from neighborlink.exceptions import FileStorageError, ValidationError
from neighborlink.store.blob import (
    AVATARS_BUCKET,
    OFFER_IMAGES_BUCKET,
    BlobStorage,
    validate_image,
)


class TestValidateImage:
    def test_accepts_supported_types(self, sample_image_bytes):
        assert validate_image(sample_image_bytes, "image/jpeg") == "jpg"
        assert validate_image(sample_image_bytes, "image/PNG") == "png"
        assert validate_image(sample_image_bytes, "image/webp") == "webp"

    def test_rejects_unsupported_type(self, sample_image_bytes):
        with pytest.raises(ValidationError) as exc_info:
            validate_image(sample_image_bytes, "application/pdf")
        assert exc_info.value.message == "Please upload a JPEG, PNG or WebP image"

    def test_rejects_missing_type(self, sample_image_bytes):
        with pytest.raises(ValidationError):
            validate_image(sample_image_bytes, None)

    def test_rejects_oversized(self):
        big = b"\x00" * (10 * 1024 * 1024 + 1)
        with pytest.raises(ValidationError) as exc_info:
            validate_image(big, "image/jpeg")
        assert exc_info.value.message == "Image must be smaller than 10MB"


class TestBlobStorage:
    def _storage(self, root):
        storage = BlobStorage(storage_root=root, public_base_url="http://test/storage/")
        storage.ensure_buckets()
        return storage

    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self, temp_storage, sample_image_bytes):
        storage = self._storage(temp_storage)

        url = await storage.upload(OFFER_IMAGES_BUCKET, "u1/offer-1.jpg", sample_image_bytes)

        assert url == "http://test/storage/offer-images/u1/offer-1.jpg"
        assert await storage.read(OFFER_IMAGES_BUCKET, "u1/offer-1.jpg") == sample_image_bytes

    @pytest.mark.asyncio
    async def test_existing_object_requires_overwrite(self, temp_storage, sample_image_bytes):
        storage = self._storage(temp_storage)
        await storage.upload(AVATARS_BUCKET, "u1/avatar.jpg", b"old")

        with pytest.raises(FileStorageError):
            await storage.upload(AVATARS_BUCKET, "u1/avatar.jpg", sample_image_bytes)

        await storage.upload(AVATARS_BUCKET, "u1/avatar.jpg", sample_image_bytes, overwrite=True)
        assert await storage.read(AVATARS_BUCKET, "u1/avatar.jpg") == sample_image_bytes

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["../escape.jpg", "u1/../../escape.jpg", ""])
    async def test_traversal_rejected(self, temp_storage, path):
        storage = self._storage(temp_storage)

        with pytest.raises(FileStorageError):
            await storage.upload(AVATARS_BUCKET, path, b"x")

        assert not os.path.exists(os.path.join(temp_storage, "escape.jpg"))

    def test_unknown_bucket(self, temp_storage):
        storage = self._storage(temp_storage)
        with pytest.raises(FileStorageError):
            storage.resolve("secrets", "a.jpg")

    @pytest.mark.asyncio
    async def test_read_missing_object(self, temp_storage):
        storage = self._storage(temp_storage)
        with pytest.raises(FileStorageError):
            await storage.read(AVATARS_BUCKET, "nobody/avatar.jpg")

    @pytest.mark.asyncio
    async def test_remove_skips_missing(self, temp_storage):
        storage = self._storage(temp_storage)
        await storage.upload(AVATARS_BUCKET, "u1/avatar.png", b"x")

        removed = await storage.remove(AVATARS_BUCKET, ["u1/avatar.png", "u1/avatar.jpg", "../x"])

        assert removed == ["u1/avatar.png"]

    def test_path_from_url(self, temp_storage):
        storage = self._storage(temp_storage)
        url = storage.public_url(AVATARS_BUCKET, "u1/avatar.jpg")

        assert storage.path_from_url(AVATARS_BUCKET, url) == "u1/avatar.jpg"
        assert storage.path_from_url(AVATARS_BUCKET, url + "?v=2") == "u1/avatar.jpg"
        assert storage.path_from_url(AVATARS_BUCKET, "https://cdn.example.com/a.jpg") is None
        assert storage.path_from_url(AVATARS_BUCKET, None) is None
