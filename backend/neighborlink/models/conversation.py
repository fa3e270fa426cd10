"""
NeighborLink Backend — Conversation SQLAlchemy Model
=====================================================

What:  ORM model for the `conversations` table: a 1:1 thread about one offer.

Invariants:
    - At most one conversation per (offer, unordered pair of participants),
      enforced by the unique expression index `uq_conversations_offer_pair`
      on (offer_id, LEAST(creator_id, participant_id),
      GREATEST(creator_id, participant_id)). Creation is racy; clients
      recover the existing row on conflict.
    - `matched` is true iff `matched_by` holds both participant ids.
"""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, func, text
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from neighborlink.database import Base


class Conversation(Base):
    """Two-party message thread scoped to one offer."""

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    offer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("offers.id", ondelete="CASCADE"),
        nullable=False,
    )
    creator_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        comment="User who started the conversation",
    )
    participant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owner of the offer",
    )

    # ── Match State ───────────────────────────────────────────────────────
    matched_by: Mapped[List[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
        default=list,
        server_default=text("'{}'"),
        comment="Participant ids that signaled agreement (max 2)",
    )
    matched: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint("creator_id <> participant_id", name="ck_conversations_two_parties"),
        CheckConstraint(
            "cardinality(matched_by) <= 2", name="ck_conversations_matched_by_size"
        ),
        Index(
            "uq_conversations_offer_pair",
            "offer_id",
            func.least(creator_id, participant_id),
            func.greatest(creator_id, participant_id),
            unique=True,
        ),
        Index("idx_conversations_creator_id", "creator_id"),
        Index("idx_conversations_participant_id", "participant_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, offer_id={self.offer_id}, "
            f"matched={self.matched})>"
        )
