"""
NeighborLink Backend — Change Feed
===================================

What:  Per-table publish/subscribe of row changes (INSERT / UPDATE / DELETE).
How:   The relational store publishes a ChangeEvent after every committed
       write. Subscribers register a callback for one table, optionally
       narrowed to one event type and to rows whose `column` equals a value.
       Each subscription has exactly one callback and must be released
       explicitly when its view is torn down.

Delivery:
    publish() awaits matching callbacks one after another in subscription
    order. A failing callback is logged and does not stop delivery to the
    others or fail the write that produced the event. There is no ordering
    guarantee between different subscribers' reactions; each must re-derive
    its own state.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]
EventFilter = Literal["INSERT", "UPDATE", "DELETE", "*"]


class ChangeEvent(BaseModel):
    """A committed row change on one table."""
    table: str
    type: ChangeType
    new: Dict[str, Any] = Field(default_factory=dict)
    old: Optional[Dict[str, Any]] = None

    @property
    def row(self) -> Dict[str, Any]:
        return self.new if self.type != "DELETE" else (self.old or {})


ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handle for one active listener. Call release() to stop delivery."""

    def __init__(
        self,
        feed: "ChangeFeed",
        sub_id: int,
        table: str,
        callback: ChangeCallback,
        event: EventFilter = "*",
        where: Optional[Tuple[str, Any]] = None,
    ):
        self._feed = feed
        self.id = sub_id
        self.table = table
        self.event = event
        self.where = where
        self.callback = callback
        self.released = False

    def matches(self, change: ChangeEvent) -> bool:
        if self.released or change.table != self.table:
            return False
        if self.event != "*" and self.event != change.type:
            return False
        if self.where is not None:
            column, value = self.where
            return str(change.row.get(column)) == str(value)
        return True

    def release(self) -> None:
        """Stop receiving events. Releasing twice is a no-op."""
        if not self.released:
            self.released = True
            self._feed._remove(self)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, table='{self.table}', event='{self.event}', "
            f"where={self.where}, released={self.released})>"
        )


class ChangeFeed:
    """In-process change feed shared by the store and all view-models."""

    def __init__(self) -> None:
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        event: EventFilter = "*",
        where: Optional[Tuple[str, Any]] = None,
    ) -> Subscription:
        """
        Register `callback` for changes on `table`.

        Args:
            table:    Table name, e.g. "messages"
            callback: Sync or async callable receiving the ChangeEvent
            event:    "INSERT", "UPDATE", "DELETE" or "*" for all
            where:    Optional (column, value) equality filter on the row
        """
        subscription = Subscription(self, next(self._ids), table, callback, event, where)
        self._subscriptions[subscription.id] = subscription
        logger.debug("Subscribed %r", subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)
        logger.debug("Released %r", subscription)

    async def publish(self, change: ChangeEvent) -> int:
        """
        Deliver `change` to every matching subscription.

        Returns the number of callbacks invoked.
        """
        delivered = 0
        # Snapshot: callbacks may subscribe or release while we iterate.
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(change):
                continue
            delivered += 1
            try:
                result = subscription.callback(change)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "Change listener %r failed on %s %s",
                    subscription,
                    change.type,
                    change.table,
                )
        return delivered

    def clear(self) -> None:
        """Release every subscription (application shutdown)."""
        for subscription in list(self._subscriptions.values()):
            subscription.release()


# ── Singleton Instance ────────────────────────────────────────────────────
change_feed = ChangeFeed()
