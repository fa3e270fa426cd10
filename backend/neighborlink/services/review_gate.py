"""
NeighborLink Backend — Review Eligibility Gate
===============================================

What:  Decides whether a viewer may rate a counterparty for a completed
       offer, validates and persists the review, and keeps the list of
       "services to review" current.
How:   Eligibility is `offer.completed_at is not None` and no prior review
       for the (offer, reviewer, reviewee) triple. Being matched is not
       required. Duplicate submissions are stopped by the store's unique
       constraint and surface as DuplicateReviewError.
Who:   ChatRoom (review button), the profile routes (reviewable services),
       POST /api/reviews.

Submission Order:
    1. rating == 0          → ValidationError("Please select a rating"); no I/O
    2. rating outside 1–5   → ValidationError
    3. comment > 500        → ValidationError
    4. reviewing yourself   → ValidationError
    5. offer not completed  → ValidationError
    6. no conversation between reviewer and reviewee about the offer
                            → AuthorizationError
    7. insert               → ConflictError becomes DuplicateReviewError
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from neighborlink.config import settings
from neighborlink.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateReviewError,
    ValidationError,
)
from neighborlink.realtime.feed import ChangeEvent, ChangeFeed, Subscription
from neighborlink.schemas.api import ReviewableService
from neighborlink.schemas.rows import OfferRow, ReviewRow
from neighborlink.store.relational import Store, store as default_store

logger = logging.getLogger(__name__)

ReviewedListener = Callable[[ReviewRow], Union[None, Awaitable[None]]]


def can_review(
    offer: Optional[OfferRow],
    viewer_id: uuid.UUID,
    existing_review: Optional[ReviewRow],
) -> bool:
    """
    True when `viewer_id` may review the counterparty for `offer`.

    ReviewGate.submit() applies the same rule on the server and also
    requires the two users to share a conversation about the offer.
    """
    if offer is None or offer.completed_at is None:
        return False
    return existing_review is None


def normalize_comment(comment: Optional[str]) -> Optional[str]:
    if comment is None:
        return None
    stripped = comment.strip()
    return stripped or None


class ReviewGate:
    """Stateless review rules shared by every viewer."""

    def __init__(self, store: Store = default_store):
        self.store = store

    async def existing_review(
        self, offer_id: uuid.UUID, reviewer_id: uuid.UUID, reviewee_id: uuid.UUID
    ) -> Optional[ReviewRow]:
        return await self.store.find_review(offer_id, reviewer_id, reviewee_id)

    async def is_eligible(
        self, offer: Optional[OfferRow], reviewer_id: uuid.UUID, reviewee_id: uuid.UUID
    ) -> bool:
        if offer is None or offer.completed_at is None:
            return False
        existing = await self.existing_review(offer.id, reviewer_id, reviewee_id)
        return can_review(offer, reviewer_id, existing)

    async def submit(
        self,
        reviewer_id: uuid.UUID,
        rating: int,
        comment: Optional[str],
        offer_id: uuid.UUID,
        reviewee_id: uuid.UUID,
    ) -> ReviewRow:
        """
        Validate and persist one review.

        Raises:
            ValidationError:      no rating, rating out of range, comment too long,
                                  self-review, offer not completed
            AuthorizationError:   the two users never talked about this offer
            NotFoundError:        unknown offer
            DuplicateReviewError: this triple was already reviewed
            DatabaseError:        the store failed
        """
        if rating == 0:
            raise ValidationError(message="Please select a rating", field="rating")
        if not 1 <= rating <= 5:
            raise ValidationError(
                message="Rating must be between 1 and 5 stars",
                field="rating",
                context={"rating": rating},
            )
        comment = normalize_comment(comment)
        max_length = settings.review_comment_max_length
        if comment is not None and len(comment) > max_length:
            raise ValidationError(
                message=f"Comment must be {max_length} characters or fewer",
                field="comment",
                context={"length": len(comment)},
            )
        if reviewer_id == reviewee_id:
            raise ValidationError(message="You cannot review yourself", field="reviewee_id")

        offer, conversations = await asyncio.gather(
            self.store.get_offer(offer_id),
            self.store.list_conversations_between(reviewer_id, reviewee_id),
        )
        if offer.completed_at is None:
            raise ValidationError(
                message="Only completed services can be reviewed",
                field="offer_id",
                context={"offer_id": str(offer_id), "status": offer.status},
            )
        if not any(c.offer_id == offer_id for c in conversations):
            raise AuthorizationError(
                message="You can only review someone you swapped with on this offer",
                context={"offer_id": str(offer_id)},
            )

        try:
            review = await self.store.insert_review(
                offer_id=offer_id,
                reviewer_id=reviewer_id,
                reviewee_id=reviewee_id,
                stars=rating,
                comment=comment,
            )
        except ConflictError as e:
            logger.info(
                "Duplicate review by %s for %s on offer %s", reviewer_id, reviewee_id, offer_id
            )
            raise DuplicateReviewError(
                context={"offer_id": str(offer_id), "reviewee_id": str(reviewee_id)}
            ) from e

        logger.info("Review %s submitted (%d stars)", review.id, rating)
        return review

    async def reviewable_services(
        self, viewer_id: uuid.UUID, reviewee_id: Optional[uuid.UUID] = None
    ) -> List[ReviewableService]:
        """
        Completed offers from the viewer's conversations that the viewer has
        not yet reviewed the counterparty for.

        With `reviewee_id`, only conversations between the viewer and that
        user are considered.
        """
        if reviewee_id is None:
            conversations_task = self.store.list_conversations_for(viewer_id)
        else:
            conversations_task = self.store.list_conversations_between(viewer_id, reviewee_id)
        conversations, reviews = await asyncio.gather(
            conversations_task,
            self.store.list_reviews_by(viewer_id, reviewee_id),
        )
        if not conversations:
            return []

        offers, profiles = await asyncio.gather(
            self.store.get_offers(c.offer_id for c in conversations),
            self.store.get_profiles(c.other_party(viewer_id) for c in conversations),
        )
        reviewed: Set[Tuple[uuid.UUID, uuid.UUID]] = {
            (r.offer_id, r.reviewee_id) for r in reviews if r.offer_id is not None
        }

        services: Dict[Tuple[uuid.UUID, uuid.UUID], ReviewableService] = {}
        for conversation in conversations:
            other_id = conversation.other_party(viewer_id)
            key = (conversation.offer_id, other_id)
            offer = offers.get(conversation.offer_id)
            other_user = profiles.get(other_id)
            if key in services or key in reviewed or other_user is None:
                continue
            if offer is None or offer.completed_at is None:
                continue
            services[key] = ReviewableService(
                offer_id=offer.id,
                skill=offer.skill,
                conversation_id=conversation.id,
                other_user=other_user,
            )
        return list(services.values())


class ReviewDialog:
    """
    Form state of one review dialog (viewer → reviewee about one offer).

    After a successful submit the inputs reset, the pair is recorded as
    reviewed and `on_submitted` listeners run so callers can re-fetch the
    reviewee's rating aggregate.
    """

    def __init__(
        self,
        gate: ReviewGate,
        reviewer_id: uuid.UUID,
        offer_id: uuid.UUID,
        reviewee_id: uuid.UUID,
    ):
        self.gate = gate
        self.reviewer_id = reviewer_id
        self.offer_id = offer_id
        self.reviewee_id = reviewee_id
        self.rating = 0
        self.comment = ""
        self.submitted = False
        self._listeners: List[ReviewedListener] = []

    def on_submitted(self, listener: ReviewedListener) -> None:
        self._listeners.append(listener)

    def reset(self) -> None:
        self.rating = 0
        self.comment = ""

    async def submit(self) -> ReviewRow:
        review = await self.gate.submit(
            self.reviewer_id, self.rating, self.comment, self.offer_id, self.reviewee_id
        )
        self.reset()
        self.submitted = True
        for listener in self._listeners:
            result = listener(review)
            if asyncio.iscoroutine(result):
                await result
        return review


class ReviewablesWatcher:
    """
    Keeps `services` equal to gate.reviewable_services(...) by recomputing
    on every conversation, review or offer change.
    """

    WATCHED_TABLES = ("conversations", "reviews", "offers")

    def __init__(
        self,
        gate: ReviewGate,
        feed: ChangeFeed,
        viewer_id: uuid.UUID,
        reviewee_id: Optional[uuid.UUID] = None,
    ):
        self.gate = gate
        self.feed = feed
        self.viewer_id = viewer_id
        self.reviewee_id = reviewee_id
        self.services: List[ReviewableService] = []
        self._subscriptions: List[Subscription] = []

    async def refresh(self) -> List[ReviewableService]:
        self.services = await self.gate.reviewable_services(self.viewer_id, self.reviewee_id)
        return self.services

    async def _on_change(self, change: ChangeEvent) -> None:
        await self.refresh()

    async def start(self) -> List[ReviewableService]:
        if not self._subscriptions:
            self._subscriptions = [
                self.feed.subscribe(table, self._on_change) for table in self.WATCHED_TABLES
            ]
        return await self.refresh()

    def close(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.release()


# ── Singleton Instance ────────────────────────────────────────────────────
review_gate = ReviewGate()
