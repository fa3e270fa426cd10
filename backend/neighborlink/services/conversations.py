"""
NeighborLink Backend — Conversation Service
============================================

What:  Starting, opening and listing conversations, and sending messages.
How:   Starting is create-or-recover: look up the viewer's conversation for
       the offer, insert one if missing, and on a unique-key conflict re-read
       it by the same natural key. Both paths return the same row. Opening
       authorizes the viewer before anything else is fetched.
Who:   Routes, ChatRoom, Inbox.

Inbox Ordering:
    Newest activity first, where activity is the latest message time, or
    the conversation's creation time when it has no messages.
"""

import asyncio
import logging
import uuid
from typing import List, Optional

from neighborlink.exceptions import (
    AuthorizationError,
    ConflictError,
    DatabaseError,
    ValidationError,
)
from neighborlink.realtime.feed import ChangeEvent, ChangeFeed, Subscription
from neighborlink.schemas.api import ChatContext, ConversationSummary
from neighborlink.schemas.rows import ConversationRow, MessageRow, OfferRow
from neighborlink.store.relational import Store, store as default_store

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(self, store: Store = default_store):
        self.store = store

    async def start_conversation(self, offer: OfferRow, viewer_id: uuid.UUID) -> ConversationRow:
        """
        Return the viewer's conversation about `offer`, creating it if needed.

        Raises:
            ValidationError: the viewer owns the offer
        """
        if offer.user_id == viewer_id:
            raise ValidationError(
                message="You cannot start a conversation on your own offer",
                field="offer_id",
            )

        existing = await self.store.find_conversation(offer.id, viewer_id)
        if existing is not None:
            return existing

        try:
            conversation = await self.store.insert_conversation(
                offer_id=offer.id,
                creator_id=viewer_id,
                participant_id=offer.user_id,
            )
        except ConflictError:
            # Another request created it between our read and insert.
            recovered = await self.store.find_conversation(offer.id, viewer_id)
            if recovered is None:
                raise DatabaseError(
                    message="Failed to start conversation",
                    context={"offer_id": str(offer.id)},
                )
            logger.info("Recovered existing conversation %s after conflict", recovered.id)
            return recovered

        logger.info("Conversation %s started on offer %s", conversation.id, offer.id)
        return conversation

    async def authorize(self, conversation_id: uuid.UUID, viewer_id: uuid.UUID) -> ConversationRow:
        conversation = await self.store.get_conversation(conversation_id)
        if not conversation.is_participant(viewer_id):
            raise AuthorizationError(
                message="You are not authorized to view this conversation",
                context={"conversation_id": str(conversation_id)},
            )
        return conversation

    async def open_conversation(
        self, conversation_id: uuid.UUID, viewer_id: uuid.UUID
    ) -> ChatContext:
        """
        Authorize the viewer, then fetch the offer and the counterparty
        concurrently. `can_review` is left False here; the chat room fills
        it in from the review gate.
        """
        conversation = await self.authorize(conversation_id, viewer_id)
        offer, other_user = await asyncio.gather(
            self.store.get_offer(conversation.offer_id),
            self.store.get_profile(conversation.other_party(viewer_id)),
        )
        return ChatContext(conversation=conversation, offer=offer, other_user=other_user)

    async def _summarize(
        self, conversation: ConversationRow, viewer_id: uuid.UUID
    ) -> ConversationSummary:
        offers, profiles, last_message, unread_count = await asyncio.gather(
            self.store.get_offers([conversation.offer_id]),
            self.store.get_profiles([conversation.other_party(viewer_id)]),
            self.store.latest_message(conversation.id),
            self.store.count_unread(conversation.id, viewer_id),
        )
        return ConversationSummary(
            conversation=conversation,
            offer=offers.get(conversation.offer_id),
            other_user=profiles.get(conversation.other_party(viewer_id)),
            last_message=last_message,
            unread_count=unread_count,
        )

    async def list_conversations(self, viewer_id: uuid.UUID) -> List[ConversationSummary]:
        conversations = await self.store.list_conversations_for(viewer_id)
        summaries = await asyncio.gather(
            *(self._summarize(c, viewer_id) for c in conversations)
        )
        return sorted(summaries, key=lambda s: s.last_activity, reverse=True)

    async def send_message(
        self, conversation: ConversationRow, sender_id: uuid.UUID, content: str
    ) -> MessageRow:
        """
        Insert a trimmed message. Open feeds receive it through the change feed.

        Raises:
            ValidationError:    empty content
            AuthorizationError: sender is not a participant
        """
        text = (content or "").strip()
        if not text:
            raise ValidationError(message="Message cannot be empty", field="content")
        if not conversation.is_participant(sender_id):
            raise AuthorizationError(
                message="You are not authorized to post in this conversation",
                context={"conversation_id": str(conversation.id)},
            )
        return await self.store.insert_message(conversation.id, sender_id, text)


class Inbox:
    """The viewer's conversation list, re-fetched on every new message."""

    def __init__(self, service: ConversationService, feed: ChangeFeed, viewer_id: uuid.UUID):
        self.service = service
        self.feed = feed
        self.viewer_id = viewer_id
        self.summaries: List[ConversationSummary] = []
        self._subscription: Optional[Subscription] = None

    async def refresh(self) -> List[ConversationSummary]:
        self.summaries = await self.service.list_conversations(self.viewer_id)
        return self.summaries

    async def _on_message_insert(self, change: ChangeEvent) -> None:
        await self.refresh()

    async def start(self) -> List[ConversationSummary]:
        if self._subscription is None:
            self._subscription = self.feed.subscribe(
                "messages", self._on_message_insert, event="INSERT"
            )
        return await self.refresh()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.release()
            self._subscription = None


# ── Singleton Instance ────────────────────────────────────────────────────
conversation_service = ConversationService()
