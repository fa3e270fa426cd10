"""
NeighborLink Backend — Relational Store
========================================

What:  Row-level data access for profiles, offers, conversations, messages
       and reviews, plus the two server-side aggregate functions.
How:   Each method opens a short-lived AsyncSession, runs one declarative
       query or write, commits, converts ORM objects into frozen row schemas
       and, for writes, publishes a ChangeEvent on the change feed after the
       commit succeeded.
Who:   Used by every view-model and service; never by routes directly.

Error Translation:
    IntegrityError with SQLSTATE 23505 → ConflictError (caller decides how
                                         to recover)
    any other SQLAlchemyError          → DatabaseError (transient; the
                                         operation is not retried)
    missing row on a by-id lookup      → NotFoundError

Conditional writes:
    Offer status only moves forward. `delist_offer` updates
    WHERE status = 'open' and `complete_offer` WHERE completed_at IS NULL,
    so racing clients cannot move an offer backwards or clear completed_at.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, desc, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from neighborlink.database import async_session_factory
from neighborlink.exceptions import (
    ConflictError,
    DatabaseError,
    NeighborLinkError,
    NotFoundError,
)
from neighborlink.models.conversation import Conversation
from neighborlink.models.message import Message
from neighborlink.models.offer import Offer
from neighborlink.models.profile import Profile
from neighborlink.models.review import Review
from neighborlink.realtime.feed import ChangeEvent, ChangeFeed, change_feed
from neighborlink.schemas.api import OfferCreate
from neighborlink.schemas.rows import (
    ConversationRow,
    MessageRow,
    OfferRow,
    ProfileRating,
    ProfileRow,
    ReviewRow,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNIQUE_VIOLATION:
        return True
    message = str(orig).lower()
    return "duplicate" in message or "unique" in message


def _constraint_name(exc: IntegrityError) -> Optional[str]:
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Store:
    """
    Data-access layer over the relational database.

    Every public coroutine is a single round-trip (or a short, committed
    sequence) and returns row schemas, never live ORM objects.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_factory,
        feed: ChangeFeed = change_feed,
    ):
        self._session_factory = session_factory
        self.feed = feed

    # ══════════════════════════════════════════════════════════════════════
    # Plumbing
    # ══════════════════════════════════════════════════════════════════════

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            try:
                yield session
            except NeighborLinkError:
                await session.rollback()
                raise
            except IntegrityError as e:
                await session.rollback()
                if _is_unique_violation(e):
                    constraint = _constraint_name(e)
                    logger.info("Unique violation in %s (%s)", operation, constraint)
                    raise ConflictError(
                        constraint=constraint,
                        context={"operation": operation},
                    ) from e
                logger.error("Integrity error in %s: %s", operation, str(e))
                raise DatabaseError(context={"operation": operation}) from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Database error in %s: %s", operation, str(e), exc_info=True)
                raise DatabaseError(
                    context={"operation": operation, "error_type": type(e).__name__},
                ) from e

    async def _publish(
        self,
        table: str,
        change_type: str,
        new: Any,
        old: Any = None,
    ) -> None:
        await self.feed.publish(
            ChangeEvent(
                table=table,
                type=change_type,
                new=new.model_dump() if new is not None else {},
                old=old.model_dump() if old is not None else None,
            )
        )

    # ══════════════════════════════════════════════════════════════════════
    # Profiles
    # ══════════════════════════════════════════════════════════════════════

    async def create_profile(
        self, profile_id: uuid.UUID, email: str, name: str, **fields: Any
    ) -> ProfileRow:
        async with self._session("create_profile") as session:
            profile = Profile(id=profile_id, email=email, name=name, **fields)
            session.add(profile)
            await session.commit()
            row = ProfileRow.model_validate(profile)
        await self._publish("profiles", "INSERT", row)
        return row

    async def get_profile(self, profile_id: uuid.UUID) -> ProfileRow:
        async with self._session("get_profile") as session:
            profile = await session.get(Profile, profile_id)
            if profile is None:
                raise NotFoundError(resource="profile", resource_id=str(profile_id))
            return ProfileRow.model_validate(profile)

    async def get_profiles(self, profile_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, ProfileRow]:
        ids = list(set(profile_ids))
        if not ids:
            return {}
        async with self._session("get_profiles") as session:
            result = await session.execute(select(Profile).where(Profile.id.in_(ids)))
            return {p.id: ProfileRow.model_validate(p) for p in result.scalars().all()}

    async def update_profile(self, profile_id: uuid.UUID, fields: Dict[str, Any]) -> ProfileRow:
        async with self._session("update_profile") as session:
            profile = await session.get(Profile, profile_id)
            if profile is None:
                raise NotFoundError(resource="profile", resource_id=str(profile_id))
            old = ProfileRow.model_validate(profile)
            for key, value in fields.items():
                setattr(profile, key, value)
            profile.updated_at = _utcnow()
            await session.commit()
            row = ProfileRow.model_validate(profile)
        await self._publish("profiles", "UPDATE", row, old)
        return row

    # ══════════════════════════════════════════════════════════════════════
    # Offers
    # ══════════════════════════════════════════════════════════════════════

    async def create_offer(
        self, user_id: uuid.UUID, data: OfferCreate, image_url: Optional[str] = None
    ) -> OfferRow:
        async with self._session("create_offer") as session:
            offer = Offer(
                user_id=user_id,
                type=data.type,
                skill=data.skill,
                description=data.description,
                zip=data.zip,
                city=data.city,
                tags=list(data.tags),
                image_url=image_url,
                images=[image_url] if image_url else [],
                status="open",
            )
            session.add(offer)
            await session.commit()
            row = OfferRow.model_validate(offer)
        await self._publish("offers", "INSERT", row)
        return row

    async def get_offer(self, offer_id: uuid.UUID) -> OfferRow:
        async with self._session("get_offer") as session:
            offer = await session.get(Offer, offer_id)
            if offer is None:
                raise NotFoundError(resource="offer", resource_id=str(offer_id))
            return OfferRow.model_validate(offer)

    async def get_offers(self, offer_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, OfferRow]:
        ids = list(set(offer_ids))
        if not ids:
            return {}
        async with self._session("get_offers") as session:
            result = await session.execute(select(Offer).where(Offer.id.in_(ids)))
            return {o.id: OfferRow.model_validate(o) for o in result.scalars().all()}

    async def list_offers(
        self,
        status: Optional[str] = "open",
        offer_type: Optional[str] = None,
    ) -> List[OfferRow]:
        """Offers newest first, filtered by status and type when given."""
        query = select(Offer)
        if status is not None:
            query = query.where(Offer.status == status)
        if offer_type is not None:
            query = query.where(Offer.type == offer_type)
        query = query.order_by(desc(Offer.created_at))
        async with self._session("list_offers") as session:
            result = await session.execute(query)
            return [OfferRow.model_validate(o) for o in result.scalars().all()]

    async def delist_offer(self, offer_id: uuid.UUID) -> Optional[OfferRow]:
        """
        Move an open offer to `matched`.

        Returns the updated row, or None when the offer was not open
        (already matched or completed). Idempotent.
        """
        statement = (
            update(Offer)
            .where(Offer.id == offer_id, Offer.status == "open")
            .values(status="matched", updated_at=_utcnow())
            .returning(Offer)
        )
        async with self._session("delist_offer") as session:
            result = await session.execute(statement)
            offer = result.scalars().first()
            await session.commit()
            row = OfferRow.model_validate(offer) if offer is not None else None
        if row is not None:
            await self._publish("offers", "UPDATE", row)
        return row

    async def complete_offer(
        self, offer_id: uuid.UUID, completed_at: Optional[datetime] = None
    ) -> Tuple[OfferRow, bool]:
        """
        Mark an offer completed, setting `completed_at` once.

        Returns (row, changed). When the offer was already completed the
        stored row is returned unchanged with changed=False.
        """
        statement = (
            update(Offer)
            .where(Offer.id == offer_id, Offer.completed_at.is_(None))
            .values(
                status="completed",
                completed_at=completed_at or _utcnow(),
                updated_at=_utcnow(),
            )
            .returning(Offer)
        )
        async with self._session("complete_offer") as session:
            result = await session.execute(statement)
            offer = result.scalars().first()
            await session.commit()
            row = OfferRow.model_validate(offer) if offer is not None else None
        if row is None:
            return await self.get_offer(offer_id), False
        await self._publish("offers", "UPDATE", row)
        return row, True

    # ══════════════════════════════════════════════════════════════════════
    # Conversations
    # ══════════════════════════════════════════════════════════════════════

    async def get_conversation(self, conversation_id: uuid.UUID) -> ConversationRow:
        async with self._session("get_conversation") as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFoundError(resource="conversation", resource_id=str(conversation_id))
            return ConversationRow.model_validate(conversation)

    async def find_conversation(
        self, offer_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[ConversationRow]:
        """The conversation about `offer_id` that `user_id` takes part in, if any."""
        query = (
            select(Conversation)
            .where(
                Conversation.offer_id == offer_id,
                or_(
                    Conversation.creator_id == user_id,
                    Conversation.participant_id == user_id,
                ),
            )
            .order_by(Conversation.created_at)
            .limit(1)
        )
        async with self._session("find_conversation") as session:
            result = await session.execute(query)
            conversation = result.scalars().first()
            return ConversationRow.model_validate(conversation) if conversation else None

    async def insert_conversation(
        self,
        offer_id: uuid.UUID,
        creator_id: uuid.UUID,
        participant_id: uuid.UUID,
    ) -> ConversationRow:
        """Raises ConflictError when the (offer, pair) conversation already exists."""
        async with self._session("insert_conversation") as session:
            conversation = Conversation(
                offer_id=offer_id,
                creator_id=creator_id,
                participant_id=participant_id,
                matched_by=[],
                matched=False,
            )
            session.add(conversation)
            await session.commit()
            row = ConversationRow.model_validate(conversation)
        await self._publish("conversations", "INSERT", row)
        return row

    async def list_conversations_for(self, user_id: uuid.UUID) -> List[ConversationRow]:
        query = select(Conversation).where(
            or_(
                Conversation.creator_id == user_id,
                Conversation.participant_id == user_id,
            )
        )
        async with self._session("list_conversations_for") as session:
            result = await session.execute(query)
            return [ConversationRow.model_validate(c) for c in result.scalars().all()]

    async def list_conversations_between(
        self, user_a: uuid.UUID, user_b: uuid.UUID
    ) -> List[ConversationRow]:
        query = select(Conversation).where(
            or_(
                and_(Conversation.creator_id == user_a, Conversation.participant_id == user_b),
                and_(Conversation.creator_id == user_b, Conversation.participant_id == user_a),
            )
        )
        async with self._session("list_conversations_between") as session:
            result = await session.execute(query)
            return [ConversationRow.model_validate(c) for c in result.scalars().all()]

    async def update_conversation_match(
        self,
        conversation_id: uuid.UUID,
        matched_by: Sequence[uuid.UUID],
        matched: bool,
    ) -> ConversationRow:
        async with self._session("update_conversation_match") as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFoundError(resource="conversation", resource_id=str(conversation_id))
            old = ConversationRow.model_validate(conversation)
            conversation.matched_by = list(matched_by)
            conversation.matched = matched
            conversation.updated_at = _utcnow()
            await session.commit()
            row = ConversationRow.model_validate(conversation)
        await self._publish("conversations", "UPDATE", row, old)
        return row

    # ══════════════════════════════════════════════════════════════════════
    # Messages
    # ══════════════════════════════════════════════════════════════════════

    async def count_messages(self, conversation_id: uuid.UUID) -> int:
        query = select(func.count(Message.id)).where(Message.conversation_id == conversation_id)
        async with self._session("count_messages") as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def fetch_messages(
        self, conversation_id: uuid.UUID, offset: int, limit: int
    ) -> List[MessageRow]:
        """One page of messages, newest first (rows offset .. offset+limit-1)."""
        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(desc(Message.created_at), desc(Message.id))
            .offset(offset)
            .limit(limit)
        )
        async with self._session("fetch_messages") as session:
            result = await session.execute(query)
            return [MessageRow.model_validate(m) for m in result.scalars().all()]

    async def latest_message(self, conversation_id: uuid.UUID) -> Optional[MessageRow]:
        messages = await self.fetch_messages(conversation_id, offset=0, limit=1)
        return messages[0] if messages else None

    async def count_unread(self, conversation_id: uuid.UUID, viewer_id: uuid.UUID) -> int:
        """Unread messages in one conversation that were sent to `viewer_id`."""
        query = select(func.count(Message.id)).where(
            Message.conversation_id == conversation_id,
            Message.is_read.is_(False),
            Message.sender_id != viewer_id,
        )
        async with self._session("count_unread") as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def insert_message(
        self, conversation_id: uuid.UUID, sender_id: uuid.UUID, content: str
    ) -> MessageRow:
        async with self._session("insert_message") as session:
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                is_read=False,
            )
            session.add(message)
            await session.commit()
            row = MessageRow.model_validate(message)
        await self._publish("messages", "INSERT", row)
        return row

    async def mark_read(
        self, message_ids: Sequence[uuid.UUID], reader_id: uuid.UUID
    ) -> List[MessageRow]:
        """
        Batch-mark messages read on behalf of their recipient.

        Messages sent by `reader_id` itself, or already read, are left
        untouched. Returns the rows that changed.
        """
        if not message_ids:
            return []
        statement = (
            update(Message)
            .where(
                Message.id.in_(list(message_ids)),
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
            .returning(Message)
        )
        async with self._session("mark_read") as session:
            result = await session.execute(statement)
            rows = [MessageRow.model_validate(m) for m in result.scalars().all()]
            await session.commit()
        for row in rows:
            await self._publish("messages", "UPDATE", row)
        return rows

    # ══════════════════════════════════════════════════════════════════════
    # Reviews
    # ══════════════════════════════════════════════════════════════════════

    async def find_review(
        self,
        offer_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        reviewee_id: uuid.UUID,
    ) -> Optional[ReviewRow]:
        query = select(Review).where(
            Review.offer_id == offer_id,
            Review.reviewer_id == reviewer_id,
            Review.reviewee_id == reviewee_id,
        )
        async with self._session("find_review") as session:
            result = await session.execute(query)
            review = result.scalars().first()
            return ReviewRow.model_validate(review) if review else None

    async def insert_review(
        self,
        offer_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        reviewee_id: uuid.UUID,
        stars: int,
        comment: Optional[str],
    ) -> ReviewRow:
        """Raises ConflictError when this (offer, reviewer, reviewee) review exists."""
        async with self._session("insert_review") as session:
            review = Review(
                offer_id=offer_id,
                reviewer_id=reviewer_id,
                reviewee_id=reviewee_id,
                stars=stars,
                comment=comment,
            )
            session.add(review)
            await session.commit()
            row = ReviewRow.model_validate(review)
        await self._publish("reviews", "INSERT", row)
        return row

    async def list_reviews_by(
        self, reviewer_id: uuid.UUID, reviewee_id: Optional[uuid.UUID] = None
    ) -> List[ReviewRow]:
        query = select(Review).where(Review.reviewer_id == reviewer_id)
        if reviewee_id is not None:
            query = query.where(Review.reviewee_id == reviewee_id)
        async with self._session("list_reviews_by") as session:
            result = await session.execute(query)
            return [ReviewRow.model_validate(r) for r in result.scalars().all()]

    async def recent_reviews_for_profile(
        self, reviewee_id: uuid.UUID, limit: int
    ) -> List[ReviewRow]:
        query = (
            select(Review)
            .where(Review.reviewee_id == reviewee_id)
            .order_by(desc(Review.created_at))
            .limit(limit)
        )
        async with self._session("recent_reviews_for_profile") as session:
            result = await session.execute(query)
            return [ReviewRow.model_validate(r) for r in result.scalars().all()]

    async def recent_reviews_for_offer(self, offer_id: uuid.UUID, limit: int) -> List[ReviewRow]:
        query = (
            select(Review)
            .where(Review.offer_id == offer_id)
            .order_by(desc(Review.created_at))
            .limit(limit)
        )
        async with self._session("recent_reviews_for_offer") as session:
            result = await session.execute(query)
            return [ReviewRow.model_validate(r) for r in result.scalars().all()]

    # ══════════════════════════════════════════════════════════════════════
    # Remote aggregate functions (installed by migration 001)
    # ══════════════════════════════════════════════════════════════════════

    async def unread_message_count(self, user_id: uuid.UUID) -> int:
        """Unread messages addressed to `user_id` across all conversations."""
        async with self._session("unread_message_count") as session:
            result = await session.execute(select(func.get_unread_message_count(user_id)))
            return int(result.scalar() or 0)

    async def profile_rating(self, profile_id: uuid.UUID) -> ProfileRating:
        async with self._session("profile_rating") as session:
            result = await session.execute(
                text(
                    "SELECT avg_rating, total_reviews "
                    "FROM calculate_profile_rating(:profile_id)"
                ),
                {"profile_id": profile_id},
            )
            record = result.first()
            if record is None:
                return ProfileRating()
            return ProfileRating(
                avg_rating=float(record.avg_rating or 0),
                total_reviews=int(record.total_reviews or 0),
            )


# ── Singleton Instance ────────────────────────────────────────────────────
store = Store()
