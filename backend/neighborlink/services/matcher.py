"""
NeighborLink Backend — Conversation Matcher
============================================

What:  The two-party "match" handshake on a conversation.
How:   toggle_match() flips the acting user's membership in `matched_by`,
       derives `matched`, persists both, and on the transition into the
       fully-matched state delists the offer (open → matched).
Who:   Called by the chat room and the POST /match route.

State Machine (per conversation):

    {}  ──A──▶ {A} ──B──▶ {A,B}  (matched; offer delisted once)
     ▲          │            │
     └────A─────┘            └──A──▶ {B}   (un-match; offer stays matched)

Failure Semantics:
    - Conversation update fails → MatchUpdateError; nothing changes locally.
    - Offer delist fails → reported in MatchResult.offer_error; the
      conversation update stands.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from neighborlink.exceptions import (
    AuthorizationError,
    DatabaseError,
    MatchUpdateError,
    NeighborLinkError,
)
from neighborlink.schemas.rows import ConversationRow
from neighborlink.store.relational import Store, store as default_store

logger = logging.getLogger(__name__)


class MatchOutcome(str, enum.Enum):
    REMOVED = "removed"
    WAITING = "waiting"
    BOTH_MATCHED = "both_matched"

    @property
    def notice(self) -> str:
        return _NOTICES[self]


_NOTICES = {
    MatchOutcome.REMOVED: "Match removed",
    MatchOutcome.WAITING: "Match sent! Waiting for the other user to match.",
    MatchOutcome.BOTH_MATCHED: "It's a match! You can now arrange the swap.",
}


@dataclass(frozen=True)
class MatchResult:
    """Per-step outcome of one toggle."""
    conversation: ConversationRow
    outcome: MatchOutcome
    offer_delisted: bool = False
    offer_error: Optional[str] = None


def is_fully_matched(conversation: ConversationRow, matched_by: List[uuid.UUID]) -> bool:
    return set(conversation.participants) <= set(matched_by)


class ConversationMatcher:
    def __init__(self, store: Store = default_store):
        self.store = store

    async def toggle_match(
        self, conversation: ConversationRow, acting_user_id: uuid.UUID
    ) -> MatchResult:
        """
        Add or remove `acting_user_id` from the conversation's match set.

        Args:
            conversation:   The caller's current copy of the conversation
            acting_user_id: Must be one of the two participants

        Returns:
            MatchResult with the persisted conversation row

        Raises:
            AuthorizationError: acting user is not a participant
            MatchUpdateError:   the conversation could not be persisted
        """
        if not conversation.is_participant(acting_user_id):
            raise AuthorizationError(
                message="Only conversation participants can match",
                context={"conversation_id": str(conversation.id)},
            )

        current = list(conversation.matched_by or [])
        if acting_user_id in current:
            matched_by = [uid for uid in current if uid != acting_user_id]
        else:
            matched_by = current + [acting_user_id]
        both_matched = is_fully_matched(conversation, matched_by)

        try:
            updated = await self.store.update_conversation_match(
                conversation.id, matched_by, both_matched
            )
        except NeighborLinkError as e:
            logger.error(
                "Match update failed for conversation %s: %s", conversation.id, e.message
            )
            raise MatchUpdateError(
                context={"conversation_id": str(conversation.id), **e.context}
            ) from e

        if not both_matched:
            outcome = MatchOutcome.WAITING if acting_user_id in matched_by else MatchOutcome.REMOVED
            return MatchResult(conversation=updated, outcome=outcome)

        offer_delisted = False
        offer_error = None
        if not conversation.matched:
            try:
                offer_delisted = await self.store.delist_offer(conversation.offer_id) is not None
            except DatabaseError as e:
                logger.warning(
                    "Conversation %s matched but offer %s was not delisted: %s",
                    conversation.id,
                    conversation.offer_id,
                    e.message,
                )
                offer_error = "Matched, but the offer could not be marked as matched"

        logger.info("Conversation %s fully matched", conversation.id)
        return MatchResult(
            conversation=updated,
            outcome=MatchOutcome.BOTH_MATCHED,
            offer_delisted=offer_delisted,
            offer_error=offer_error,
        )


class MatchCelebration:
    """
    Edge-triggered "both matched" notice.

    observe() returns True exactly once per false → true transition of
    `matched`. The first observation only records the state, so opening a
    conversation that is already matched does not celebrate.
    """

    def __init__(self) -> None:
        self._previous: Optional[bool] = None

    def observe(self, matched: bool) -> bool:
        previous, self._previous = self._previous, matched
        return previous is False and matched


# ── Singleton Instance ────────────────────────────────────────────────────
conversation_matcher = ConversationMatcher()
