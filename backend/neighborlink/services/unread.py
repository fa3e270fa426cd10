"""
NeighborLink Backend — Unread Notification Counter
===================================================

What:  The signed-in user's unread-message badge.
How:   Reads `get_unread_message_count` on sign-in and again after every
       change on the messages table (any conversation). The count is never
       maintained incrementally; each event costs one aggregate call.
Who:   One counter per signed-in session; served over GET
       /api/notifications/unread and pushed over /ws/notifications.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Union

from neighborlink.exceptions import NeighborLinkError
from neighborlink.realtime.feed import ChangeEvent, ChangeFeed, Subscription, change_feed
from neighborlink.store.relational import Store, store as default_store

logger = logging.getLogger(__name__)

CountListener = Callable[[int], Union[None, Awaitable[None]]]


class UnreadCounter:
    """
    Observable unread count scoped to one sign-in.

    `count` is 0 whenever nobody is signed in. Refresh failures are logged
    and leave the previous value in place.
    """

    def __init__(self, store: Store = default_store, feed: ChangeFeed = change_feed):
        self.store = store
        self.feed = feed
        self.count = 0
        self.user_id: Optional[uuid.UUID] = None
        self._subscription: Optional[Subscription] = None
        self._listeners: List[CountListener] = []

    def add_listener(self, listener: CountListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CountListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _set(self, value: int) -> None:
        if value == self.count:
            return
        self.count = value
        for listener in list(self._listeners):
            result = listener(value)
            if asyncio.iscoroutine(result):
                await result

    async def sign_in(self, user_id: uuid.UUID) -> int:
        """Start counting for `user_id`; replaces any previous sign-in."""
        if self.user_id is not None and self.user_id != user_id:
            await self.sign_out()
        self.user_id = user_id
        if self._subscription is None:
            self._subscription = self.feed.subscribe("messages", self._on_message_change)
        return await self.refresh()

    async def refresh(self) -> int:
        if self.user_id is None:
            return self.count
        try:
            value = await self.store.unread_message_count(self.user_id)
        except NeighborLinkError as e:
            logger.warning("Unread count refresh failed for %s: %s", self.user_id, e.message)
            return self.count
        await self._set(value)
        return self.count

    async def _on_message_change(self, change: ChangeEvent) -> None:
        await self.refresh()

    async def sign_out(self) -> None:
        """Release the subscription and reset the badge to zero."""
        if self._subscription is not None:
            self._subscription.release()
            self._subscription = None
        self.user_id = None
        await self._set(0)
