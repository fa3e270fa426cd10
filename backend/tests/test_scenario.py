"""
NeighborLink Backend — End-to-End Swap Scenario
================================================

What:  Two neighbors run a full swap through the chat room view-models over
       one in-memory store and one change feed: post → chat → match →
       complete → review.
Why:   The pieces only make sense together: live delivery, the match
       celebration, offer delisting, review eligibility and the unread
       badge all react to the same committed changes.
"""

import uuid

import pytest

from neighborlink.exceptions import AuthorizationError, DuplicateReviewError
from neighborlink.schemas.api import OfferCreate
from neighborlink.services.chat import ChatRoom
from neighborlink.services.conversations import ConversationService
from neighborlink.services.offers import OfferService
from neighborlink.services.unread import UnreadCounter
from neighborlink.store.blob import BlobStorage


class EventLog:
    """Collects (kind, payload) pairs emitted by a ChatRoom."""

    def __init__(self):
        self.events = []

    def __call__(self, kind, payload):
        self.events.append((kind, payload))

    def kinds(self):
        return [kind for kind, _ in self.events]

    def notices(self, level=None):
        return [
            p["message"] for k, p in self.events
            if k == "notice" and (level is None or p["level"] == level)
        ]

    def clear(self):
        self.events.clear()


class TestSwapScenario:
    @pytest.mark.asyncio
    async def test_full_swap(self, fake_store, feed, users, temp_storage):
        alice, bob = users.alice, users.bob
        offers = OfferService(fake_store, BlobStorage(storage_root=temp_storage))
        conversations = ConversationService(fake_store)

        # ── Post and start chatting ───────────────────────────────────────
        offer = await offers.create_offer(
            alice.id,
            OfferCreate(type="offer", skill="Piano lessons", description="Classical basics", zip="97201"),
        )
        conversation = await conversations.start_conversation(offer, bob.id)
        assert (await conversations.start_conversation(offer, bob.id)).id == conversation.id

        alice_badge = UnreadCounter(fake_store, feed)
        await alice_badge.sign_in(alice.id)

        bob_log, alice_log = EventLog(), EventLog()
        bob_room = ChatRoom(bob.id, conversation.id, store=fake_store, feed=feed, on_event=bob_log)
        alice_room = ChatRoom(alice.id, conversation.id, store=fake_store, feed=feed, on_event=alice_log)
        bob_context = await bob_room.open()
        await alice_room.open()

        assert bob_context.other_user.id == alice.id
        assert bob_context.can_review is False

        # ── Messages arrive live on both sides ────────────────────────────
        await bob_room.send("  Hi! Is Saturday OK?  ")

        assert bob_log.kinds() == ["message"]
        assert alice_log.events[0][1]["message"]["content"] == "Hi! Is Saturday OK?"
        assert alice_log.events[0][1]["scroll"] is True
        assert alice_badge.count == 1

        # ── Match handshake ───────────────────────────────────────────────
        bob_log.clear()
        alice_log.clear()
        waiting = await bob_room.toggle_match()

        assert waiting.outcome.value == "waiting"
        assert bob_log.notices("info") == ["Match sent! Waiting for the other user to match."]
        assert alice_log.kinds() == ["conversation"]
        assert alice_room.conversation.matched_by == [bob.id]

        both = await alice_room.toggle_match()

        assert both.outcome.value == "both_matched"
        assert both.offer_delisted is True
        celebration = "It's a match! You can now arrange the swap."
        assert alice_log.notices("success") == [celebration]
        assert bob_log.notices("success") == [celebration]
        assert fake_store.offers[offer.id].status == "matched"
        assert [o.id for o in await offers.list_open_offers()] == []

        # ── Completion unlocks reviews on both sides ──────────────────────
        with pytest.raises(AuthorizationError):
            await offers.complete_offer(offer.id, bob.id)
        await offers.complete_offer(offer.id, alice.id)

        assert bob_room.can_review is True
        assert alice_room.can_review is True
        offer_events = [p for k, p in bob_log.events if k == "offer"]
        assert offer_events[-1]["can_review"] is True
        assert offer_events[-1]["offer"]["status"] == "completed"

        # ── Review once ───────────────────────────────────────────────────
        review = await bob_room.submit_review(5, "Wonderful lessons")

        assert review.reviewee_id == alice.id
        assert bob_room.can_review is False
        assert "Review submitted" in bob_log.notices("success")
        assert fake_store.profiles[alice.id].rating == 5.0
        assert fake_store.profiles[alice.id].reviews_count == 1

        with pytest.raises(DuplicateReviewError):
            await bob_room.submit_review(4, None)

        # ── Teardown releases every room subscription ─────────────────────
        await bob_room.close()
        await alice_room.close()
        assert feed.active_count == 1

        await alice_badge.sign_out()
        assert feed.active_count == 0

    @pytest.mark.asyncio
    async def test_already_matched_conversation_does_not_celebrate_on_open(
        self, fake_store, feed, marketplace
    ):
        await fake_store.update_conversation_match(
            marketplace.conversation.id, [marketplace.alice.id, marketplace.bob.id], True
        )
        log = EventLog()
        room = ChatRoom(marketplace.bob.id, marketplace.conversation.id, store=fake_store, feed=feed, on_event=log)

        await room.open()

        assert log.notices() == []
        await room.close()

    @pytest.mark.asyncio
    async def test_outsider_cannot_open_room(self, fake_store, feed, marketplace):
        carol = await fake_store.create_profile(
            uuid.uuid4(), "carol@example.com", "Carol"
        )
        room = ChatRoom(carol.id, marketplace.conversation.id, store=fake_store, feed=feed)

        with pytest.raises(AuthorizationError):
            await room.open()

        assert room.messages is None
        assert feed.active_count == 0
