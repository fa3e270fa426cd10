"""
NeighborLink Backend — Offer Service
=====================================

What:  Posting, browsing, completing offers and reading their reviews.
How:   Thin rules over the store: image validation before upload, owner
       checks before completion, and the browse filters (type in SQL,
       free-text search in Python over skill and description).
Who:   Offer routes and the chat room (completion state).

Completion:
    Only the owner may complete an offer. `completed_at` is set once;
    completing again returns the stored row unchanged.
"""

import logging
import time
import uuid
from typing import List, Optional

from neighborlink.config import settings
from neighborlink.exceptions import AuthorizationError
from neighborlink.schemas.api import OfferCreate, ReviewWithReviewer
from neighborlink.schemas.rows import OfferRow, OfferType
from neighborlink.store.blob import (
    OFFER_IMAGES_BUCKET,
    BlobStorage,
    blob_storage,
    validate_image,
)
from neighborlink.store.relational import Store, store as default_store

logger = logging.getLogger(__name__)


def matches_search(offer: OfferRow, search: Optional[str]) -> bool:
    """Case-insensitive substring match on skill or description."""
    if not search:
        return True
    needle = search.strip().lower()
    return needle in offer.skill.lower() or needle in offer.description.lower()


class OfferService:
    def __init__(self, store: Store = default_store, blobs: BlobStorage = blob_storage):
        self.store = store
        self.blobs = blobs

    async def create_offer(
        self,
        user_id: uuid.UUID,
        data: OfferCreate,
        image: Optional[bytes] = None,
        image_content_type: Optional[str] = None,
    ) -> OfferRow:
        """
        Post an offer or request, uploading its image first when given.

        Raises:
            ValidationError:  image too large or of an unsupported type
            FileStorageError: the image could not be written
        """
        image_url = None
        if image is not None:
            validate_image(image, image_content_type)
            path = f"{user_id}/offer-{int(time.time() * 1000)}.jpg"
            image_url = await self.blobs.upload(OFFER_IMAGES_BUCKET, path, image, overwrite=True)

        offer = await self.store.create_offer(user_id, data, image_url=image_url)
        logger.info("Offer %s created by %s (%s: %s)", offer.id, user_id, offer.type, offer.skill)
        return offer

    async def list_open_offers(
        self,
        offer_type: Optional[OfferType] = None,
        search: Optional[str] = None,
    ) -> List[OfferRow]:
        offers = await self.store.list_offers(status="open", offer_type=offer_type)
        return [o for o in offers if matches_search(o, search)]

    async def get_offer(self, offer_id: uuid.UUID) -> OfferRow:
        return await self.store.get_offer(offer_id)

    async def complete_offer(self, offer_id: uuid.UUID, viewer_id: uuid.UUID) -> OfferRow:
        offer = await self.store.get_offer(offer_id)
        if offer.user_id != viewer_id:
            raise AuthorizationError(
                message="Only the owner can mark this offer as completed",
                context={"offer_id": str(offer_id)},
            )
        if offer.is_completed:
            return offer
        completed, changed = await self.store.complete_offer(offer_id)
        if changed:
            logger.info("Offer %s marked completed", offer_id)
        return completed

    async def offer_reviews(
        self, offer_id: uuid.UUID, limit: Optional[int] = None
    ) -> List[ReviewWithReviewer]:
        reviews = await self.store.recent_reviews_for_offer(
            offer_id, limit or settings.recent_reviews_limit
        )
        reviewers = await self.store.get_profiles(r.reviewer_id for r in reviews)
        return [
            ReviewWithReviewer(review=r, reviewer=reviewers.get(r.reviewer_id)) for r in reviews
        ]


# ── Singleton Instance ────────────────────────────────────────────────────
offer_service = OfferService()
