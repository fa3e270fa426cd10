"""
NeighborLink Backend — Message SQLAlchemy Model
================================================

What:  ORM model for the `messages` table.

Invariants:
    - Display order is `created_at` ascending.
    - `is_read` only moves false → true, written by the recipient's client
      when messages are fetched; never by the sender.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, ForeignKey, Index, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from neighborlink.database import Base


class Message(Base):
    """A single chat message inside a conversation."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(
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

    # Page query: WHERE conversation_id = :id ORDER BY created_at DESC
    # Unread badge: WHERE is_read = false (partial index keeps it small)
    __table_args__ = (
        Index("idx_messages_conversation_created_at", "conversation_id", created_at.desc()),
        Index(
            "idx_messages_unread",
            "conversation_id",
            "sender_id",
            postgresql_where=text("is_read = false"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, conversation_id={self.conversation_id}, "
            f"is_read={self.is_read})>"
        )
