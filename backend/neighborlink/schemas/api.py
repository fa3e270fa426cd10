"""
NeighborLink Backend — API Request/Response Schemas
====================================================

What:  Pydantic models defining the HTTP/WebSocket contract.
How:   FastAPI validates request bodies against these models and serializes
       responses from them; the service layer returns several of them
       directly (summaries, chat context, reviewable services).
"""

import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from neighborlink.schemas.rows import (
    ConversationRow,
    MessageRow,
    OfferRow,
    OfferType,
    ProfileRow,
    ReviewRow,
)


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class OfferCreate(BaseModel):
    """Fields a user fills in when posting an offer or a request."""
    type: OfferType = Field(description="'offer' (I can do this) or 'request' (I need this)")
    skill: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    zip: str = Field(min_length=1, max_length=20)
    city: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("skill", "description", "zip")
    @classmethod
    def strip_required(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class ProfileUpdate(BaseModel):
    """Editable profile fields; omitted fields are left unchanged."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    bio: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    phone: Optional[str] = None
    skills_offered: Optional[List[str]] = None
    skills_needed: Optional[List[str]] = None
    interests: Optional[List[str]] = None


class MessageCreate(BaseModel):
    content: str = Field(description="Message text; surrounding whitespace is trimmed")


class ReviewCreate(BaseModel):
    """
    A review submission. `rating` 0 means "no stars chosen" and is rejected
    by the review gate before anything is persisted.
    """
    offer_id: uuid.UUID
    reviewee_id: uuid.UUID
    rating: int = Field(ge=0, le=5)
    comment: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ChatContext(BaseModel):
    """Everything the chat view needs after authorization succeeded."""
    conversation: ConversationRow
    offer: OfferRow
    other_user: ProfileRow
    can_review: bool = False


class ConversationSummary(BaseModel):
    """One inbox row."""
    conversation: ConversationRow
    offer: Optional[OfferRow] = None
    other_user: Optional[ProfileRow] = None
    last_message: Optional[MessageRow] = None
    unread_count: int = 0

    @property
    def last_activity(self) -> datetime:
        if self.last_message is not None:
            return self.last_message.created_at
        return self.conversation.created_at or datetime.min.replace(tzinfo=timezone.utc)


class MessagePage(BaseModel):
    """A page of messages in ascending display order."""
    messages: List[MessageRow]
    offset: int = Field(description="Offset to request for the next older page")
    total_count: int
    has_more: bool


class MatchResponse(BaseModel):
    conversation: ConversationRow
    outcome: str
    notice: str
    offer_delisted: bool = False
    offer_error: Optional[str] = None


class ReviewableService(BaseModel):
    """A completed offer the viewer may still review the counterparty for."""
    offer_id: uuid.UUID
    skill: str
    conversation_id: uuid.UUID
    other_user: ProfileRow


class ReviewWithReviewer(BaseModel):
    review: ReviewRow
    reviewer: Optional[ProfileRow] = None


class UnreadCountResponse(BaseModel):
    unread_count: int


class Notice(BaseModel):
    """A non-blocking, user-facing notice, shown as a toast by clients."""
    level: Literal["info", "success", "error"]
    message: str


class ErrorResponse(BaseModel):
    """Standardized error response format for all API errors."""
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    realtime_subscriptions: int = Field(description="Active change-feed subscriptions")
    uptime_seconds: float = Field(description="Seconds since service started")
