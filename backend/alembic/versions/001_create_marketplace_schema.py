"""Create marketplace schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates profiles, offers, conversations, messages and reviews, plus
       the server-side aggregates the application reads but never
       recomputes:
         - get_unread_message_count(user_id) → integer
         - calculate_profile_rating(profile_id) → (avg_rating, total_reviews)
         - trigger reviews_refresh_profile_rating keeping profiles.rating and
           profiles.reviews_count equal to the mean/count of received stars
How:   PostgreSQL-specific: UUID keys, TEXT[] columns, an expression unique
       index for the unordered conversation pair, a partial unread index.

Rollback: downgrade() drops everything in reverse dependency order.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def _text_array(name: str) -> sa.Column:
    return sa.Column(
        name, postgresql.ARRAY(sa.String()), server_default=sa.text("'{}'"), nullable=False
    )


UNREAD_COUNT_FUNCTION = """
CREATE OR REPLACE FUNCTION get_unread_message_count(user_id uuid)
RETURNS integer
LANGUAGE sql STABLE AS $$
    SELECT count(*)::integer
    FROM messages m
    JOIN conversations c ON c.id = m.conversation_id
    WHERE m.is_read = false
      AND m.sender_id <> user_id
      AND (c.creator_id = user_id OR c.participant_id = user_id)
$$;
"""

PROFILE_RATING_FUNCTION = """
CREATE OR REPLACE FUNCTION calculate_profile_rating(profile_id uuid)
RETURNS TABLE (avg_rating double precision, total_reviews integer)
LANGUAGE sql STABLE AS $$
    SELECT coalesce(avg(r.stars), 0)::double precision,
           count(*)::integer
    FROM reviews r
    WHERE r.reviewee_id = profile_id
$$;
"""

REFRESH_RATING_TRIGGER_FUNCTION = """
CREATE OR REPLACE FUNCTION refresh_profile_rating()
RETURNS trigger
LANGUAGE plpgsql AS $$
DECLARE
    target uuid;
BEGIN
    FOREACH target IN ARRAY ARRAY[
        CASE WHEN TG_OP <> 'INSERT' THEN OLD.reviewee_id END,
        CASE WHEN TG_OP <> 'DELETE' THEN NEW.reviewee_id END
    ] LOOP
        CONTINUE WHEN target IS NULL;
        UPDATE profiles p
        SET rating = agg.avg_rating,
            reviews_count = agg.total_reviews
        FROM calculate_profile_rating(target) agg
        WHERE p.id = target;
    END LOOP;
    RETURN NULL;
END;
$$;
"""


def upgrade() -> None:
    # ── profiles ──────────────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False,
                  comment="Same value as the auth service user id"),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("zip", sa.String(20), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lon", sa.Float(), nullable=True),
        sa.Column("rating", sa.Float(), server_default=sa.text("0"), nullable=False,
                  comment="Mean of received review stars"),
        sa.Column("reviews_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("completed_swaps", sa.Integer(), server_default=sa.text("0"), nullable=False),
        _text_array("skills_offered"),
        _text_array("skills_needed"),
        _text_array("interests"),
        _text_array("badges"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_profiles"),
    )

    # ── offers ────────────────────────────────────────────────────────────
    op.create_table(
        "offers",
        sa.Column("id", postgresql.UUID(as_uuid=True),
                  server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False,
                  comment="Owner of the listing"),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("skill", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("zip", sa.String(20), nullable=False),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lon", sa.Float(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("images", postgresql.ARRAY(sa.Text()), server_default=sa.text("'{}'"),
                  nullable=False),
        _text_array("tags"),
        sa.Column("status", sa.String(20), server_default=sa.text("'open'"), nullable=False,
                  comment="open, matched, completed"),
        sa.Column("completed_at", postgresql.TIMESTAMP(timezone=True), nullable=True,
                  comment="Set once when the owner marks the offer complete"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_offers"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint("type IN ('offer', 'request')", name="ck_offers_type"),
        sa.CheckConstraint("status IN ('open', 'matched', 'completed')", name="ck_offers_status"),
        sa.CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)", name="ck_offers_completed_at"
        ),
    )
    op.create_index(
        "idx_offers_status_created_at", "offers", ["status", sa.text("created_at DESC")]
    )
    op.create_index("idx_offers_user_id", "offers", ["user_id"])

    # ── conversations ─────────────────────────────────────────────────────
    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True),
                  server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("offer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("creator_id", postgresql.UUID(as_uuid=True), nullable=False,
                  comment="User who started the conversation"),
        sa.Column("participant_id", postgresql.UUID(as_uuid=True), nullable=False,
                  comment="Owner of the offer"),
        sa.Column("matched_by", postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
                  server_default=sa.text("'{}'"), nullable=False,
                  comment="Participant ids that signaled agreement (max 2)"),
        sa.Column("matched", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_conversations"),
        sa.ForeignKeyConstraint(["offer_id"], ["offers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["creator_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["participant_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint("creator_id <> participant_id", name="ck_conversations_two_parties"),
        sa.CheckConstraint("cardinality(matched_by) <= 2", name="ck_conversations_matched_by_size"),
    )
    op.create_index(
        "uq_conversations_offer_pair",
        "conversations",
        [
            "offer_id",
            sa.text("LEAST(creator_id, participant_id)"),
            sa.text("GREATEST(creator_id, participant_id)"),
        ],
        unique=True,
    )
    op.create_index("idx_conversations_creator_id", "conversations", ["creator_id"])
    op.create_index("idx_conversations_participant_id", "conversations", ["participant_id"])

    # ── messages ──────────────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True),
                  server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True),
                  server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_messages"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["profiles.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "idx_messages_conversation_created_at",
        "messages",
        ["conversation_id", sa.text("created_at DESC")],
    )
    op.create_index(
        "idx_messages_unread",
        "messages",
        ["conversation_id", "sender_id"],
        postgresql_where=sa.text("is_read = false"),
    )

    # ── reviews ───────────────────────────────────────────────────────────
    op.create_table(
        "reviews",
        sa.Column("id", postgresql.UUID(as_uuid=True),
                  server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("offer_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reviewer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reviewee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("stars", sa.SmallInteger(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True),
                  server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_reviews"),
        sa.ForeignKeyConstraint(["offer_id"], ["offers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reviewer_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reviewee_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "offer_id", "reviewer_id", "reviewee_id", name="uq_reviews_offer_reviewer_reviewee"
        ),
        sa.CheckConstraint("stars BETWEEN 1 AND 5", name="ck_reviews_stars"),
        sa.CheckConstraint(
            "comment IS NULL OR char_length(comment) <= 500", name="ck_reviews_comment_length"
        ),
    )
    op.create_index(
        "idx_reviews_reviewee_created_at",
        "reviews",
        ["reviewee_id", sa.text("created_at DESC")],
    )

    # ── Aggregates ────────────────────────────────────────────────────────
    op.execute(UNREAD_COUNT_FUNCTION)
    op.execute(PROFILE_RATING_FUNCTION)
    op.execute(REFRESH_RATING_TRIGGER_FUNCTION)
    op.execute(
        "CREATE TRIGGER reviews_refresh_profile_rating "
        "AFTER INSERT OR UPDATE OR DELETE ON reviews "
        "FOR EACH ROW EXECUTE FUNCTION refresh_profile_rating()"
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS reviews_refresh_profile_rating ON reviews")
    op.execute("DROP FUNCTION IF EXISTS refresh_profile_rating()")
    op.execute("DROP FUNCTION IF EXISTS calculate_profile_rating(uuid)")
    op.execute("DROP FUNCTION IF EXISTS get_unread_message_count(uuid)")

    op.drop_index("idx_reviews_reviewee_created_at", table_name="reviews")
    op.drop_table("reviews")
    op.drop_index("idx_messages_unread", table_name="messages")
    op.drop_index("idx_messages_conversation_created_at", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_conversations_participant_id", table_name="conversations")
    op.drop_index("idx_conversations_creator_id", table_name="conversations")
    op.drop_index("uq_conversations_offer_pair", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("idx_offers_user_id", table_name="offers")
    op.drop_index("idx_offers_status_created_at", table_name="offers")
    op.drop_table("offers")
    op.drop_table("profiles")
