"""
NeighborLink Backend — Review Gate Tests
=========================================

What we test:
    ✅ Eligibility: completed offer and no prior review (a match is not required)
    ✅ Rating 0 is rejected before any store call
    ✅ Out-of-range ratings and over-long comments are rejected
    ✅ A duplicate submission surfaces as DuplicateReviewError
    ✅ Open offers, outsiders and self-reviews are rejected before insert
    ✅ Reviewable services: completed, not yet reviewed, deduped per (offer, user)
    ✅ The dialog resets and notifies listeners after a successful submit
    ✅ The watcher recomputes when reviews change
"""

import uuid
from datetime import datetime, timezone

import pytest

from neighborlink.exceptions import AuthorizationError, DuplicateReviewError, ValidationError
from neighborlink.schemas.rows import OfferRow, ReviewRow
from neighborlink.services.review_gate import (
    ReviewablesWatcher,
    ReviewDialog,
    ReviewGate,
    can_review,
    normalize_comment,
)


def make_offer(completed=True):
    return OfferRow(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        type="offer",
        skill="Bike repair",
        description="Tune-ups and flat fixes",
        zip="97201",
        status="completed" if completed else "open",
        completed_at=datetime(2024, 6, 2, tzinfo=timezone.utc) if completed else None,
    )


class TestCanReview:
    def test_requires_completed_offer(self):
        assert can_review(make_offer(completed=False), uuid.uuid4(), None) is False

    def test_missing_offer(self):
        assert can_review(None, uuid.uuid4(), None) is False

    def test_completed_and_unreviewed(self):
        assert can_review(make_offer(), uuid.uuid4(), None) is True

    def test_existing_review_blocks(self):
        offer = make_offer()
        review = ReviewRow(
            id=uuid.uuid4(),
            offer_id=offer.id,
            reviewer_id=uuid.uuid4(),
            reviewee_id=offer.user_id,
            stars=4,
        )
        assert can_review(offer, review.reviewer_id, review) is False

    def test_normalize_comment(self):
        assert normalize_comment("  great swap  ") == "great swap"
        assert normalize_comment("   ") is None
        assert normalize_comment(None) is None


class TestReviewSubmit:
    @pytest.mark.asyncio
    async def test_zero_rating_makes_no_store_call(self, mock_store):
        gate = ReviewGate(mock_store)

        with pytest.raises(ValidationError) as exc_info:
            await gate.submit(uuid.uuid4(), 0, "nice", uuid.uuid4(), uuid.uuid4())

        assert exc_info.value.message == "Please select a rating"
        mock_store.insert_review.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [-1, 6])
    async def test_out_of_range_rating(self, mock_store, rating):
        gate = ReviewGate(mock_store)

        with pytest.raises(ValidationError):
            await gate.submit(uuid.uuid4(), rating, None, uuid.uuid4(), uuid.uuid4())

        mock_store.insert_review.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_comment_too_long(self, mock_store):
        gate = ReviewGate(mock_store)

        with pytest.raises(ValidationError) as exc_info:
            await gate.submit(uuid.uuid4(), 5, "x" * 501, uuid.uuid4(), uuid.uuid4())

        assert exc_info.value.context["field"] == "comment"

    @pytest.mark.asyncio
    async def test_submit_persists_trimmed_comment(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)
        await fake_store.complete_offer(marketplace.offer.id)

        review = await gate.submit(
            marketplace.bob.id, 5, "  Patient and clear!  ", marketplace.offer.id, marketplace.alice.id
        )

        assert review.stars == 5
        assert review.comment == "Patient and clear!"
        assert fake_store.profiles[marketplace.alice.id].reviews_count == 1
        assert fake_store.profiles[marketplace.alice.id].rating == 5.0

    @pytest.mark.asyncio
    async def test_duplicate_review(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)
        await fake_store.complete_offer(marketplace.offer.id)
        await gate.submit(marketplace.bob.id, 4, None, marketplace.offer.id, marketplace.alice.id)

        with pytest.raises(DuplicateReviewError) as exc_info:
            await gate.submit(marketplace.bob.id, 5, None, marketplace.offer.id, marketplace.alice.id)

        assert exc_info.value.message == "You have already reviewed this user for this service"
        assert len(fake_store.reviews) == 1

    @pytest.mark.asyncio
    async def test_eligibility_ignores_match_state(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)
        completed, _ = await fake_store.complete_offer(marketplace.offer.id)

        assert marketplace.conversation.matched is False
        assert await gate.is_eligible(completed, marketplace.bob.id, marketplace.alice.id) is True

        await gate.submit(marketplace.bob.id, 3, None, completed.id, marketplace.alice.id)
        assert await gate.is_eligible(completed, marketplace.bob.id, marketplace.alice.id) is False

    @pytest.mark.asyncio
    async def test_open_offer_cannot_be_reviewed(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)

        with pytest.raises(ValidationError) as exc_info:
            await gate.submit(marketplace.bob.id, 1, None, marketplace.offer.id, marketplace.alice.id)

        assert exc_info.value.message == "Only completed services can be reviewed"
        assert "insert_review" not in fake_store.calls
        assert fake_store.profiles[marketplace.alice.id].reviews_count == 0

    @pytest.mark.asyncio
    async def test_outsider_cannot_review(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)
        await fake_store.complete_offer(marketplace.offer.id)
        eve = await fake_store.create_profile(uuid.uuid4(), "eve@example.com", "Eve")

        with pytest.raises(AuthorizationError):
            await gate.submit(eve.id, 1, "never met", marketplace.offer.id, marketplace.alice.id)

        assert fake_store.reviews == {}
        assert fake_store.profiles[marketplace.alice.id].rating == 0

    @pytest.mark.asyncio
    async def test_cannot_review_yourself(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)
        await fake_store.complete_offer(marketplace.offer.id)

        with pytest.raises(ValidationError) as exc_info:
            await gate.submit(
                marketplace.alice.id, 5, None, marketplace.offer.id, marketplace.alice.id
            )

        assert exc_info.value.field == "reviewee_id"
        assert fake_store.reviews == {}


class TestReviewableServices:
    @pytest.mark.asyncio
    async def test_only_completed_unreviewed(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)

        assert await gate.reviewable_services(marketplace.bob.id) == []

        await fake_store.complete_offer(marketplace.offer.id)
        services = await gate.reviewable_services(marketplace.bob.id)

        assert len(services) == 1
        assert services[0].offer_id == marketplace.offer.id
        assert services[0].skill == "Guitar lessons"
        assert services[0].other_user.id == marketplace.alice.id
        assert services[0].conversation_id == marketplace.conversation.id

        await gate.submit(marketplace.bob.id, 5, None, marketplace.offer.id, marketplace.alice.id)
        assert await gate.reviewable_services(marketplace.bob.id) == []

    @pytest.mark.asyncio
    async def test_both_sides_can_review(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)
        await fake_store.complete_offer(marketplace.offer.id)
        await gate.submit(marketplace.bob.id, 5, None, marketplace.offer.id, marketplace.alice.id)

        services = await gate.reviewable_services(marketplace.alice.id)

        assert [s.other_user.id for s in services] == [marketplace.bob.id]

    @pytest.mark.asyncio
    async def test_scoped_to_reviewee(self, fake_store, marketplace):
        gate = ReviewGate(fake_store)
        await fake_store.complete_offer(marketplace.offer.id)
        stranger = await fake_store.create_profile(uuid.uuid4(), "carol@example.com", "Carol")

        assert await gate.reviewable_services(marketplace.bob.id, stranger.id) == []
        scoped = await gate.reviewable_services(marketplace.bob.id, marketplace.alice.id)
        assert len(scoped) == 1


class TestReviewDialog:
    @pytest.mark.asyncio
    async def test_submit_resets_and_notifies(self, fake_store, marketplace):
        submitted = []
        await fake_store.complete_offer(marketplace.offer.id)
        dialog = ReviewDialog(
            ReviewGate(fake_store), marketplace.bob.id, marketplace.offer.id, marketplace.alice.id
        )
        dialog.on_submitted(submitted.append)
        dialog.rating = 4
        dialog.comment = "Patient and fun"

        review = await dialog.submit()

        assert submitted == [review]
        assert dialog.submitted is True
        assert dialog.rating == 0
        assert dialog.comment == ""

    @pytest.mark.asyncio
    async def test_failed_submit_keeps_inputs(self, fake_store, marketplace):
        dialog = ReviewDialog(
            ReviewGate(fake_store), marketplace.bob.id, marketplace.offer.id, marketplace.alice.id
        )
        dialog.comment = "forgot the stars"

        with pytest.raises(ValidationError):
            await dialog.submit()

        assert dialog.comment == "forgot the stars"
        assert dialog.submitted is False


class TestReviewablesWatcher:
    @pytest.mark.asyncio
    async def test_recomputes_on_changes(self, fake_store, feed, marketplace):
        gate = ReviewGate(fake_store)
        watcher = ReviewablesWatcher(gate, feed, marketplace.bob.id)

        assert await watcher.start() == []

        await fake_store.complete_offer(marketplace.offer.id)
        assert len(watcher.services) == 1

        await gate.submit(marketplace.bob.id, 5, None, marketplace.offer.id, marketplace.alice.id)
        assert watcher.services == []

        watcher.close()
        assert feed.active_count == 0
