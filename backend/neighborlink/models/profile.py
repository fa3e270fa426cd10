"""
NeighborLink Backend — Profile SQLAlchemy Model
================================================

What:  ORM model for the `profiles` table: one row per signed-up user.
How:   `id` equals the auth service's user id. The aggregate columns
       (`rating`, `reviews_count`) are written only by the
       `reviews_refresh_profile_rating` trigger installed by migration 001.

Invariant:
    rating        = mean(reviews.stars)  WHERE reviews.reviewee_id = profiles.id
    reviews_count = count(reviews)       WHERE reviews.reviewee_id = profiles.id
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Float, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from neighborlink.database import Base


class Profile(Base):
    """Identity record plus denormalized review aggregates."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Same value as the auth service user id",
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    # ── Location ──────────────────────────────────────────────────────────
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    zip: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # ── Aggregates (trigger-maintained) ───────────────────────────────────
    rating: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        server_default=text("0"),
        comment="Mean of received review stars",
    )
    reviews_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    completed_swaps: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    # ── Skill Tags ────────────────────────────────────────────────────────
    skills_offered: Mapped[List[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list, server_default=text("'{}'")
    )
    skills_needed: Mapped[List[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list, server_default=text("'{}'")
    )
    interests: Mapped[List[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list, server_default=text("'{}'")
    )
    badges: Mapped[List[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list, server_default=text("'{}'")
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

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, name='{self.name}', rating={self.rating})>"
