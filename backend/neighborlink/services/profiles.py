"""
NeighborLink Backend — Profile Service
=======================================

What:  Reading and editing profiles, avatar upload, recent reviews and the
       rating aggregate.
How:   `rating` and `reviews_count` on the profile row are maintained by a
       database trigger; rating() reads `calculate_profile_rating` and never
       recomputes it here.
"""

import logging
import uuid
from typing import List, Optional

from neighborlink.config import settings
from neighborlink.exceptions import AuthorizationError
from neighborlink.schemas.api import ProfileUpdate, ReviewWithReviewer
from neighborlink.schemas.rows import ProfileRating, ProfileRow
from neighborlink.store.blob import AVATARS_BUCKET, BlobStorage, blob_storage, validate_image
from neighborlink.store.relational import Store, store as default_store

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, store: Store = default_store, blobs: BlobStorage = blob_storage):
        self.store = store
        self.blobs = blobs

    async def get_profile(self, profile_id: uuid.UUID) -> ProfileRow:
        return await self.store.get_profile(profile_id)

    async def update_profile(
        self, profile_id: uuid.UUID, viewer_id: uuid.UUID, data: ProfileUpdate
    ) -> ProfileRow:
        if profile_id != viewer_id:
            raise AuthorizationError(message="You can only edit your own profile")
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            return await self.store.get_profile(profile_id)
        return await self.store.update_profile(profile_id, fields)

    async def upload_avatar(
        self, viewer_id: uuid.UUID, content: bytes, content_type: Optional[str]
    ) -> ProfileRow:
        """
        Store a new avatar at `<user>/avatar.<ext>` and point the profile at it.

        A previous avatar stored under a different path is removed after the
        profile has been updated.
        """
        extension = validate_image(content, content_type)
        profile = await self.store.get_profile(viewer_id)
        path = f"{viewer_id}/avatar.{extension}"
        url = await self.blobs.upload(AVATARS_BUCKET, path, content, overwrite=True)

        updated = await self.store.update_profile(viewer_id, {"avatar_url": url})
        old_path = self.blobs.path_from_url(AVATARS_BUCKET, profile.avatar_url)
        if old_path and old_path != path:
            await self.blobs.remove(AVATARS_BUCKET, [old_path])
        logger.info("Avatar updated for %s", viewer_id)
        return updated

    async def recent_reviews(
        self, profile_id: uuid.UUID, limit: Optional[int] = None
    ) -> List[ReviewWithReviewer]:
        reviews = await self.store.recent_reviews_for_profile(
            profile_id, limit or settings.recent_reviews_limit
        )
        reviewers = await self.store.get_profiles(r.reviewer_id for r in reviews)
        return [
            ReviewWithReviewer(review=r, reviewer=reviewers.get(r.reviewer_id)) for r in reviews
        ]

    async def rating(self, profile_id: uuid.UUID) -> ProfileRating:
        return await self.store.profile_rating(profile_id)


# ── Singleton Instance ────────────────────────────────────────────────────
profile_service = ProfileService()
