"""
Viewfinder: Admin Content API

Edits to quiz choices, quiz images and photographer profiles.  Every edit
that changes the text or image behind an embedding invalidates exactly that
unit and queues it for re-embedding in the same transaction.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.photographer import DIMENSIONS
from app.schemas.content import (
    ChoiceCreate,
    ChoiceUpdate,
    ContentEditResponse,
    ImageCreate,
    ImageUpdate,
    ProfileResponse,
    ProfileUpsert,
)
from app.services.content_service import ContentService

logger = structlog.get_logger("viewfinder.api.admin.content")

router = APIRouter()

_content_service = ContentService()


# ──────────────────────────────────────────────────────────────────────────────
# Choices
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/questions/{question_id}/choices",
    response_model=ContentEditResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a choice to a question",
)
async def create_choice(
    question_id: uuid.UUID,
    payload: ChoiceCreate,
    db: AsyncSession = Depends(get_db),
) -> ContentEditResponse:
    choice = await _content_service.create_choice(
        question_id,
        payload.choice_key,
        payload.choice_label,
        db,
        choice_description=payload.choice_description,
        choice_order=payload.choice_order,
    )
    return ContentEditResponse(id=choice.id)


@router.patch(
    "/choices/{choice_id}",
    response_model=ContentEditResponse,
    summary="Edit a choice",
)
async def update_choice(
    choice_id: uuid.UUID,
    payload: ChoiceUpdate,
    db: AsyncSession = Depends(get_db),
) -> ContentEditResponse:
    choice, job_id = await _content_service.update_choice(
        choice_id, db, **payload.model_dump(exclude_unset=True)
    )
    return ContentEditResponse(id=choice.id, job_ids=[job_id] if job_id else [])


# ──────────────────────────────────────────────────────────────────────────────
# Images
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/questions/{question_id}/images",
    response_model=ContentEditResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an image to a question",
)
async def create_image(
    question_id: uuid.UUID,
    payload: ImageCreate,
    db: AsyncSession = Depends(get_db),
) -> ContentEditResponse:
    image = await _content_service.create_image(
        question_id,
        payload.image_key,
        payload.image_label,
        payload.image_url,
        db,
        image_description=payload.image_description,
        image_order=payload.image_order,
    )
    return ContentEditResponse(id=image.id)


@router.patch(
    "/images/{image_id}",
    response_model=ContentEditResponse,
    summary="Edit an image",
)
async def update_image(
    image_id: uuid.UUID,
    payload: ImageUpdate,
    db: AsyncSession = Depends(get_db),
) -> ContentEditResponse:
    image, job_id = await _content_service.update_image(
        image_id, db, **payload.model_dump(exclude_unset=True)
    )
    return ContentEditResponse(id=image.id, job_ids=[job_id] if job_id else [])


# ──────────────────────────────────────────────────────────────────────────────
# Photographer profiles
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/photographers/{photographer_id}/profile",
    response_model=ProfileResponse,
    summary="Create or edit a photographer's matching profile",
)
async def upsert_profile(
    photographer_id: uuid.UUID,
    payload: ProfileUpsert,
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Only the descriptions present in the body are compared and saved;
    a dimension whose text is unchanged keeps its embedding."""
    try:
        profile, job_ids = await _content_service.upsert_profile(
            photographer_id,
            db,
            descriptions=payload.descriptions(),
            service_regions=payload.service_regions,
            companion_types=payload.companion_types,
            price_min=payload.price_min,
            price_max=payload.price_max,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc

    return ProfileResponse(
        photographer_id=photographer_id,
        profile_completed=profile.profile_completed,
        pending_dimensions=[d for d in DIMENSIONS if not profile.has_current_embedding(d)],
        job_ids=job_ids,
    )
