"""
NeighborLink Backend — Offer Route Handlers
============================================

What:  Browse, post, complete offers; start a conversation about one; read
       its recent reviews.
How:   Posting is multipart (form fields plus an optional image) so the
       image and the offer row are created in one request.
"""

import logging
import uuid
from typing import List, Optional

import pydantic
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from neighborlink.exceptions import ValidationError
from neighborlink.routes.deps import get_session
from neighborlink.schemas.api import ErrorResponse, OfferCreate, ReviewWithReviewer
from neighborlink.schemas.rows import ConversationRow, OfferRow, OfferType
from neighborlink.services.conversations import conversation_service
from neighborlink.services.offers import offer_service
from neighborlink.session import Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/offers", tags=["Offers"])


def _split_tags(tags: Optional[str]) -> List[str]:
    if not tags:
        return []
    return [t.strip() for t in tags.split(",") if t.strip()]


def _offer_from_form(**fields) -> OfferCreate:
    try:
        return OfferCreate(**fields)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(
            message=f"Invalid {field or 'offer'}: {first.get('msg', 'invalid value')}",
            field=field or None,
        )


@router.get("", response_model=List[OfferRow], summary="Browse open offers")
async def list_offers(
    type: Optional[OfferType] = Query(default=None, description="'offer' or 'request'; omit for all"),
    search: Optional[str] = Query(default=None, description="Case-insensitive match on skill or description"),
    session: Session = Depends(get_session),
) -> List[OfferRow]:
    return await offer_service.list_open_offers(offer_type=type, search=search)


@router.post(
    "",
    status_code=201,
    response_model=OfferRow,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Post an offer or request",
)
async def create_offer(
    type: str = Form(...),
    skill: str = Form(...),
    description: str = Form(...),
    zip: str = Form(...),
    city: Optional[str] = Form(default=None),
    tags: Optional[str] = Form(default=None, description="Comma-separated"),
    image: Optional[UploadFile] = File(default=None, description="JPEG, PNG or WebP, max 10MB"),
    session: Session = Depends(get_session),
) -> OfferRow:
    data = _offer_from_form(
        type=type,
        skill=skill,
        description=description,
        zip=zip,
        city=city,
        tags=_split_tags(tags),
    )
    content = None
    content_type = None
    if image is not None:
        try:
            content = await image.read()
            content_type = image.content_type
        finally:
            await image.close()
    return await offer_service.create_offer(session.user_id, data, content, content_type)


@router.get(
    "/{offer_id}",
    response_model=OfferRow,
    responses={404: {"model": ErrorResponse}},
)
async def get_offer(offer_id: uuid.UUID, session: Session = Depends(get_session)) -> OfferRow:
    return await offer_service.get_offer(offer_id)


@router.post(
    "/{offer_id}/complete",
    response_model=OfferRow,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Mark an offer completed (owner only)",
)
async def complete_offer(offer_id: uuid.UUID, session: Session = Depends(get_session)) -> OfferRow:
    return await offer_service.complete_offer(offer_id, session.user_id)


@router.post(
    "/{offer_id}/conversation",
    response_model=ConversationRow,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Start (or reopen) a conversation about this offer",
)
async def start_conversation(
    offer_id: uuid.UUID, session: Session = Depends(get_session)
) -> ConversationRow:
    offer = await offer_service.get_offer(offer_id)
    return await conversation_service.start_conversation(offer, session.user_id)


@router.get("/{offer_id}/reviews", response_model=List[ReviewWithReviewer])
async def offer_reviews(
    offer_id: uuid.UUID, session: Session = Depends(get_session)
) -> List[ReviewWithReviewer]:
    return await offer_service.offer_reviews(offer_id)
