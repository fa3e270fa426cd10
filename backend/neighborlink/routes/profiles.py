"""
NeighborLink Backend — Profile Route Handlers
==============================================

What:  Profile read/update, avatar upload, recent reviews and rating.
"""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile

from neighborlink.routes.deps import get_session
from neighborlink.schemas.api import ErrorResponse, ProfileUpdate, ReviewWithReviewer
from neighborlink.schemas.rows import ProfileRating, ProfileRow
from neighborlink.services.profiles import profile_service
from neighborlink.session import Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profiles", tags=["Profiles"])


@router.post(
    "/me/avatar",
    response_model=ProfileRow,
    responses={400: {"model": ErrorResponse}},
    summary="Replace the caller's avatar (JPEG, PNG or WebP, max 10MB)",
)
async def upload_avatar(
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
) -> ProfileRow:
    try:
        content = await file.read()
        return await profile_service.upload_avatar(session.user_id, content, file.content_type)
    finally:
        await file.close()


@router.get("/{profile_id}", response_model=ProfileRow, responses={404: {"model": ErrorResponse}})
async def get_profile(profile_id: uuid.UUID, session: Session = Depends(get_session)) -> ProfileRow:
    return await profile_service.get_profile(profile_id)


@router.patch(
    "/{profile_id}",
    response_model=ProfileRow,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_profile(
    profile_id: uuid.UUID,
    body: ProfileUpdate,
    session: Session = Depends(get_session),
) -> ProfileRow:
    return await profile_service.update_profile(profile_id, session.user_id, body)


@router.get("/{profile_id}/reviews", response_model=List[ReviewWithReviewer])
async def recent_reviews(
    profile_id: uuid.UUID, session: Session = Depends(get_session)
) -> List[ReviewWithReviewer]:
    return await profile_service.recent_reviews(profile_id)


@router.get("/{profile_id}/rating", response_model=ProfileRating)
async def profile_rating(
    profile_id: uuid.UUID, session: Session = Depends(get_session)
) -> ProfileRating:
    return await profile_service.rating(profile_id)
