"""
NeighborLink Backend — Review Route Handlers
=============================================

What:  Submit a review; list the services the caller can still review.
How:   POST /api/reviews goes through the review gate, so a zero rating is
       rejected (400) without touching the store and a repeat submission
       returns 409 "already reviewed".
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from neighborlink.routes.deps import get_session
from neighborlink.schemas.api import ErrorResponse, ReviewableService, ReviewCreate
from neighborlink.schemas.rows import ReviewRow
from neighborlink.services.review_gate import review_gate
from neighborlink.session import Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["Reviews"])


@router.post(
    "",
    status_code=201,
    response_model=ReviewRow,
    responses={
        400: {"description": "No rating chosen or comment too long", "model": ErrorResponse},
        409: {"description": "Already reviewed this user for this service", "model": ErrorResponse},
    },
)
async def submit_review(body: ReviewCreate, session: Session = Depends(get_session)) -> ReviewRow:
    return await review_gate.submit(
        session.user_id, body.rating, body.comment, body.offer_id, body.reviewee_id
    )


@router.get(
    "/reviewable",
    response_model=List[ReviewableService],
    summary="Completed services the caller has not reviewed yet",
)
async def reviewable_services(
    reviewee_id: Optional[uuid.UUID] = Query(default=None, description="Limit to one counterparty"),
    session: Session = Depends(get_session),
) -> List[ReviewableService]:
    return await review_gate.reviewable_services(session.user_id, reviewee_id)
