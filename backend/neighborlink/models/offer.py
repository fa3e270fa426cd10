"""
NeighborLink Backend — Offer SQLAlchemy Model
==============================================

What:  ORM model for the `offers` table: a skill listing of type
       `offer` (I can do this) or `request` (I need this).

Lifecycle (forward only):
    open ──▶ matched      (both conversation participants matched)
    open ──▶ completed    (owner marks complete)
    matched ──▶ completed (owner marks complete)

    `completed_at` is set exactly once, at the completion transition,
    and never cleared. The store enforces this with conditional UPDATEs.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import CheckConstraint, Float, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from neighborlink.database import Base


class Offer(Base):
    """A posted skill-swap listing."""

    __tablename__ = "offers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owner of the listing",
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    skill: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Location ──────────────────────────────────────────────────────────
    zip: Mapped[str] = mapped_column(String(20), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # ── Media & Tags ──────────────────────────────────────────────────────
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    images: Mapped[List[str]] = mapped_column(
        ARRAY(Text), nullable=False, default=list, server_default=text("'{}'")
    )
    tags: Mapped[List[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list, server_default=text("'{}'")
    )

    # ── Lifecycle ─────────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="open",
        server_default=text("'open'"),
        comment="open, matched, completed",
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        default=None,
        comment="Set once when the owner marks the offer complete",
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

    # ── Constraints & Indexes ─────────────────────────────────────────────
    # Public listing query: WHERE status = 'open' ORDER BY created_at DESC
    __table_args__ = (
        CheckConstraint("type IN ('offer', 'request')", name="ck_offers_type"),
        CheckConstraint(
            "status IN ('open', 'matched', 'completed')", name="ck_offers_status"
        ),
        CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="ck_offers_completed_at",
        ),
        Index("idx_offers_status_created_at", "status", created_at.desc()),
        Index("idx_offers_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Offer(id={self.id}, type='{self.type}', status='{self.status}')>"
