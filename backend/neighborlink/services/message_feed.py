"""
NeighborLink Backend — Message Feed Synchronizer
=================================================

What:  An ordered, paginated, live view of one conversation's messages.
How:   Pages are fetched newest-first and reversed for display; older pages
       are prepended by load_more(). Live INSERTs from the change feed are
       appended in arrival order. Every fetched page batch-marks inbound
       unread messages as read.
Who:   Owned by a ChatRoom (one per open chat view); closed on teardown.

Offsets:
    `offset` counts the newest messages already covered by the view.
    load() sets it to page_size, load_more() advances it by page_size and
    each live append advances it by one, so older pages never overlap the
    messages already shown. Prepending still dedupes by id.

Auto-scroll:
    on_scroll() records whether the viewport is within `threshold` of the
    bottom. A live append requests a scroll only if that flag is set when
    the message arrives.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from neighborlink.config import settings
from neighborlink.exceptions import NeighborLinkError
from neighborlink.realtime.feed import ChangeEvent, ChangeFeed, Subscription
from neighborlink.schemas.api import MessagePage
from neighborlink.schemas.rows import ConversationRow, MessageRow
from neighborlink.store.relational import Store

logger = logging.getLogger(__name__)

AppendListener = Callable[[MessageRow, bool], Union[None, Awaitable[None]]]
ConversationListener = Callable[[ConversationRow], Union[None, Awaitable[None]]]


async def _notify(listener, *args) -> None:
    if listener is None:
        return
    result = listener(*args)
    if asyncio.iscoroutine(result):
        await result


class MessageFeed:
    """
    Message list for one (conversation, viewer) pair.

    Attributes:
        conversation: Latest known conversation row (replaced on UPDATE)
        messages:     Ascending by created_at, no duplicate ids
        offset:       Newest messages covered; next older page starts here
        total_count:  Messages in the conversation at last count
        near_bottom:  Whether new messages should scroll into view
    """

    def __init__(
        self,
        store: Store,
        feed: ChangeFeed,
        conversation: ConversationRow,
        viewer_id: uuid.UUID,
        page_size: Optional[int] = None,
        threshold: Optional[int] = None,
        on_append: Optional[AppendListener] = None,
        on_conversation: Optional[ConversationListener] = None,
    ):
        self.store = store
        self.feed = feed
        self.conversation = conversation
        self.viewer_id = viewer_id
        self.page_size = page_size or settings.messages_page_size
        self.threshold = settings.near_bottom_threshold if threshold is None else threshold
        self.on_append = on_append
        self.on_conversation = on_conversation

        self.messages: List[MessageRow] = []
        self.offset = 0
        self.total_count = 0
        self.near_bottom = True
        self._subscriptions: List[Subscription] = []

    @property
    def has_more(self) -> bool:
        return self.offset < self.total_count

    @property
    def is_live(self) -> bool:
        return bool(self._subscriptions)

    # ── Paging ────────────────────────────────────────────────────────────

    async def _fetch_page(self, offset: int) -> Tuple[List[MessageRow], int]:
        """One page in ascending order, plus the total count, with inbound messages marked read."""
        total_count, newest_first = await asyncio.gather(
            self.store.count_messages(self.conversation.id),
            self.store.fetch_messages(self.conversation.id, offset, self.page_size),
        )
        page = list(reversed(newest_first))
        return await self._mark_inbound_read(page), total_count

    async def _mark_inbound_read(self, page: List[MessageRow]) -> List[MessageRow]:
        unread_ids = [
            m.id for m in page if m.sender_id != self.viewer_id and not m.is_read
        ]
        if not unread_ids:
            return page
        try:
            await self.store.mark_read(unread_ids, self.viewer_id)
        except NeighborLinkError as e:
            # The page is still shown; the next load retries.
            logger.warning(
                "Could not mark %d messages read in %s: %s",
                len(unread_ids),
                self.conversation.id,
                e.message,
            )
            return page
        marked = set(unread_ids)
        return [
            m.model_copy(update={"is_read": True}) if m.id in marked else m for m in page
        ]

    def snapshot(self) -> MessagePage:
        return MessagePage(
            messages=list(self.messages),
            offset=self.offset,
            total_count=self.total_count,
            has_more=self.has_more,
        )

    async def load(self, offset: int = 0) -> MessagePage:
        """
        Replace the view with one page, by default the most recent.

        A non-zero `offset` serves stateless clients that page by offset.
        """
        page, total_count = await self._fetch_page(offset)
        self.messages = page
        self.total_count = total_count
        self.offset = offset + self.page_size
        logger.debug(
            "Loaded %d of %d messages for %s", len(page), total_count, self.conversation.id
        )
        return self.snapshot()

    async def load_more(self) -> List[MessageRow]:
        """
        Prepend the next older page.

        Returns only the messages that were added. A no-op when there is
        nothing older.
        """
        if not self.has_more:
            return []
        page, total_count = await self._fetch_page(self.offset)
        known = {m.id for m in self.messages}
        older = [m for m in page if m.id not in known]
        self.messages = older + self.messages
        self.total_count = total_count
        self.offset += self.page_size
        return older

    # ── Live Updates ──────────────────────────────────────────────────────

    def start(self) -> None:
        """Subscribe to new messages and conversation updates. Idempotent."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self.feed.subscribe(
                "messages",
                self._on_message_insert,
                event="INSERT",
                where=("conversation_id", self.conversation.id),
            ),
            self.feed.subscribe(
                "conversations",
                self._on_conversation_update,
                event="UPDATE",
                where=("id", self.conversation.id),
            ),
        ]

    async def _on_message_insert(self, change: ChangeEvent) -> None:
        message = MessageRow.model_validate(change.new)
        if any(m.id == message.id for m in self.messages):
            return
        self.messages.append(message)
        self.total_count += 1
        self.offset += 1
        await _notify(self.on_append, message, self.near_bottom)

    async def _on_conversation_update(self, change: ChangeEvent) -> None:
        self.conversation = ConversationRow.model_validate(change.new)
        await _notify(self.on_conversation, self.conversation)

    def on_scroll(self, scroll_height: float, scroll_top: float, client_height: float) -> bool:
        """Record a scroll position; returns the updated near-bottom flag."""
        self.near_bottom = scroll_height - scroll_top - client_height < self.threshold
        return self.near_bottom

    def close(self) -> None:
        """Release every subscription. Safe to call more than once."""
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.release()
