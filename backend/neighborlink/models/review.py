"""
NeighborLink Backend — Review SQLAlchemy Model
===============================================

What:  ORM model for the `reviews` table: 1–5 stars from a reviewer to a
       reviewee for one offer.

Invariant:
    At most one review per (offer_id, reviewer_id, reviewee_id), enforced by
    `uq_reviews_offer_reviewer_reviewee`. A duplicate insert surfaces as
    DuplicateReviewError ("already reviewed"), not a generic failure.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    SmallInteger,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from neighborlink.database import Base


class Review(Base):
    """Star rating with optional comment."""

    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    offer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("offers.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    stars: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint(
            "offer_id",
            "reviewer_id",
            "reviewee_id",
            name="uq_reviews_offer_reviewer_reviewee",
        ),
        CheckConstraint("stars BETWEEN 1 AND 5", name="ck_reviews_stars"),
        CheckConstraint(
            "comment IS NULL OR char_length(comment) <= 500",
            name="ck_reviews_comment_length",
        ),
        Index("idx_reviews_reviewee_created_at", "reviewee_id", created_at.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<Review(id={self.id}, reviewee_id={self.reviewee_id}, "
            f"stars={self.stars})>"
        )
