"""
NeighborLink Backend — Row Schemas
===================================

What:  Pydantic copies of the five stored entities.
How:   The store converts ORM objects to these frozen models
       (`model_validate(..., from_attributes=True)`) before returning them,
       so view-models only ever hold transient, read-mostly copies. Local
       changes are made with `model_copy(update=...)`, never in place.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

OfferType = Literal["offer", "request"]
OfferStatus = Literal["open", "matched", "completed"]

# Allowed forward transitions of Offer.status
OFFER_TRANSITIONS = {
    "open": {"matched", "completed"},
    "matched": {"completed"},
    "completed": set(),
}


def can_transition(current: str, target: str) -> bool:
    """True when an offer may move from `current` to `target` status."""
    return target in OFFER_TRANSITIONS.get(current, set())


class _Row(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}


class ProfileRow(_Row):
    id: uuid.UUID
    email: str
    name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    rating: float = 0.0
    reviews_count: int = 0
    completed_swaps: int = 0
    skills_offered: List[str] = Field(default_factory=list)
    skills_needed: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    badges: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.name or "User"


class OfferRow(_Row):
    id: uuid.UUID
    user_id: uuid.UUID
    type: OfferType
    skill: str
    description: str
    zip: str
    city: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    status: OfferStatus = "open"
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class ConversationRow(_Row):
    id: uuid.UUID
    offer_id: uuid.UUID
    creator_id: uuid.UUID
    participant_id: uuid.UUID
    matched_by: List[uuid.UUID] = Field(default_factory=list)
    matched: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def participants(self) -> Tuple[uuid.UUID, uuid.UUID]:
        return (self.creator_id, self.participant_id)

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in self.participants

    def other_party(self, user_id: uuid.UUID) -> uuid.UUID:
        """The counterparty of `user_id` in this conversation."""
        return self.participant_id if user_id == self.creator_id else self.creator_id

    def has_matched(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.matched_by or [])


class MessageRow(_Row):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    is_read: bool = False
    created_at: datetime


class ReviewRow(_Row):
    id: uuid.UUID
    offer_id: Optional[uuid.UUID] = None
    reviewer_id: uuid.UUID
    reviewee_id: uuid.UUID
    stars: int = Field(ge=1, le=5)
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class ProfileRating(_Row):
    """Result of the `calculate_profile_rating` aggregate function."""
    avg_rating: float = 0.0
    total_reviews: int = 0
