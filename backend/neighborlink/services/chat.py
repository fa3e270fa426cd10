"""
NeighborLink Backend — Chat Room
=================================

What:  The view-model behind one open chat: authorization, the message
       feed, the match handshake, offer completion state and the review
       button.
How:   open() authorizes and loads context, then starts the message feed
       and an offer subscription. Everything the client must see is pushed
       through one `on_event(kind, payload)` callback:

           "message"       {"message": ..., "scroll": bool}
           "conversation"  {"conversation": ...}
           "offer"         {"offer": ..., "can_review": bool}
           "notice"        {"level": ..., "message": ...}

Who:   The /ws/conversations/{id} WebSocket route, one room per socket.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from neighborlink.exceptions import NeighborLinkError
from neighborlink.realtime.feed import ChangeEvent, ChangeFeed, Subscription, change_feed
from neighborlink.schemas.api import ChatContext, MessagePage, Notice
from neighborlink.schemas.rows import ConversationRow, MessageRow, OfferRow, ReviewRow
from neighborlink.services.conversations import ConversationService
from neighborlink.services.matcher import (
    ConversationMatcher,
    MatchCelebration,
    MatchOutcome,
    MatchResult,
)
from neighborlink.services.message_feed import MessageFeed
from neighborlink.services.review_gate import ReviewDialog, ReviewGate
from neighborlink.store.relational import Store, store as default_store

logger = logging.getLogger(__name__)

EventSink = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]


class ChatRoom:
    def __init__(
        self,
        viewer_id: uuid.UUID,
        conversation_id: uuid.UUID,
        store: Store = default_store,
        feed: ChangeFeed = change_feed,
        on_event: Optional[EventSink] = None,
    ):
        self.viewer_id = viewer_id
        self.conversation_id = conversation_id
        self.store = store
        self.feed = feed
        self.on_event = on_event

        self.conversations = ConversationService(store)
        self.matcher = ConversationMatcher(store)
        self.gate = ReviewGate(store)
        self.celebration = MatchCelebration()

        self.context: Optional[ChatContext] = None
        self.messages: Optional[MessageFeed] = None
        self.can_review = False
        self._subscriptions: List[Subscription] = []

    # ── Event Delivery ────────────────────────────────────────────────────

    async def _emit(self, kind: str, payload: Dict[str, Any]) -> None:
        if self.on_event is None:
            return
        result = self.on_event(kind, payload)
        if asyncio.iscoroutine(result):
            await result

    async def notify(self, level: str, message: str) -> None:
        await self._emit("notice", Notice(level=level, message=message).model_dump())

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @property
    def conversation(self) -> ConversationRow:
        if self.messages is not None:
            return self.messages.conversation
        return self.context.conversation

    @property
    def offer(self) -> OfferRow:
        return self.context.offer

    async def open(self) -> ChatContext:
        """
        Authorize, load context and the first message page, then go live.

        Raises:
            AuthorizationError: viewer is not a participant (nothing is loaded)
            NotFoundError:      conversation, offer or counterparty missing
        """
        context = await self.conversations.open_conversation(self.conversation_id, self.viewer_id)
        self.context = context
        self.celebration.observe(context.conversation.matched)

        self.messages = MessageFeed(
            self.store,
            self.feed,
            context.conversation,
            self.viewer_id,
            on_append=self._on_append,
            on_conversation=self._on_conversation,
        )
        await self.messages.load()
        self.messages.start()
        self._subscriptions.append(
            self.feed.subscribe(
                "offers", self._on_offer_update, event="UPDATE", where=("id", context.offer.id)
            )
        )

        self.can_review = await self.gate.is_eligible(
            context.offer, self.viewer_id, context.other_user.id
        )
        self.context = context.model_copy(update={"can_review": self.can_review})
        return self.context

    async def close(self) -> None:
        """Release every subscription held by this room."""
        if self.messages is not None:
            self.messages.close()
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.release()

    # ── Change Feed Reactions ─────────────────────────────────────────────

    async def _on_append(self, message: MessageRow, scroll: bool) -> None:
        await self._emit("message", {"message": message.model_dump(mode="json"), "scroll": scroll})

    async def _on_conversation(self, conversation: ConversationRow) -> None:
        self.context = self.context.model_copy(update={"conversation": conversation})
        await self._emit("conversation", {"conversation": conversation.model_dump(mode="json")})
        if self.celebration.observe(conversation.matched):
            await self.notify("success", MatchOutcome.BOTH_MATCHED.notice)

    async def _on_offer_update(self, change: ChangeEvent) -> None:
        offer = OfferRow.model_validate(change.new)
        self.context = self.context.model_copy(update={"offer": offer})
        try:
            self.can_review = await self.gate.is_eligible(
                offer, self.viewer_id, self.context.other_user.id
            )
        except NeighborLinkError as e:
            logger.warning("Review eligibility refresh failed: %s", e.message)
        await self._emit(
            "offer", {"offer": offer.model_dump(mode="json"), "can_review": self.can_review}
        )

    # ── User Actions ──────────────────────────────────────────────────────

    async def load_more(self) -> List[MessageRow]:
        return await self.messages.load_more()

    def page(self) -> MessagePage:
        return self.messages.snapshot()

    def on_scroll(self, scroll_height: float, scroll_top: float, client_height: float) -> bool:
        return self.messages.on_scroll(scroll_height, scroll_top, client_height)

    async def send(self, content: str) -> MessageRow:
        return await self.conversations.send_message(self.conversation, self.viewer_id, content)

    async def toggle_match(self) -> MatchResult:
        """
        Toggle the viewer's match. The celebration for a completed match is
        raised by the conversation UPDATE, not here, so it fires once even
        when the other participant completes the handshake.
        """
        result = await self.matcher.toggle_match(self.conversation, self.viewer_id)
        if result.outcome is not MatchOutcome.BOTH_MATCHED:
            await self.notify("info", result.outcome.notice)
        if result.offer_error:
            await self.notify("error", result.offer_error)
        return result

    async def submit_review(self, rating: int, comment: Optional[str]) -> ReviewRow:
        dialog = ReviewDialog(self.gate, self.viewer_id, self.offer.id, self.context.other_user.id)
        dialog.rating = rating
        dialog.comment = comment or ""
        review = await dialog.submit()
        self.can_review = False
        self.context = self.context.model_copy(update={"can_review": False})
        await self.notify("success", "Review submitted")
        return review
