"""
Viewfinder: Content editing with embedding invalidation.

Every edit that changes the source of an embedding nulls exactly the
affected unit's vector and stamp, then enqueues a job for it, all within
the caller's transaction.  Matching therefore never scores a vector that no
longer describes its content.  Edits that leave the source untouched
(ordering, activation flags, price range) invalidate nothing.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.embedding_job import EmbeddingJob
from app.models.photographer import DIMENSIONS, Photographer, PhotographerProfile
from app.models.survey import SurveyChoice, SurveyImage, SurveyQuestion
from app.services.embedding_queue import EmbeddingJobQueue
from app.services.embedding_store import ContentUnit, apply_invalidation
from app.utils.errors import NotFoundError

logger = structlog.get_logger("viewfinder.content_service")


def _changed(current: Any, new: Any) -> bool:
    return new is not None and new != current


class ContentService:
    def __init__(self, queue: EmbeddingJobQueue | None = None) -> None:
        self.queue = queue or EmbeddingJobQueue()

    async def _invalidate_and_enqueue(
        self,
        row: Any,
        unit: ContentUnit,
        db_session: AsyncSession,
    ) -> uuid.UUID:
        apply_invalidation(row, unit)
        job_id = await self.queue.enqueue(
            unit.job_type, unit.target_id, db_session, dimension=unit.dimension
        )
        logger.info("content_unit_invalidated", unit=str(unit), job_id=str(job_id))
        return job_id

    # ------------------------------------------------------------------ #
    # Survey choices
    # ------------------------------------------------------------------ #

    async def create_choice(
        self,
        question_id: uuid.UUID,
        choice_key: str,
        choice_label: str,
        db_session: AsyncSession,
        choice_description: Optional[str] = None,
        choice_order: Optional[int] = None,
    ) -> SurveyChoice:
        question = await db_session.get(SurveyQuestion, question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")

        choice = SurveyChoice(
            id=uuid.uuid4(),
            question_id=question_id,
            choice_key=choice_key,
            choice_label=choice_label,
            choice_description=choice_description,
            choice_order=choice_order if choice_order is not None else 0,
            is_active=True,
        )
        db_session.add(choice)
        await db_session.flush()
        await self.queue.enqueue("choice_embedding", choice.id, db_session)
        return choice

    async def update_choice(
        self,
        choice_id: uuid.UUID,
        db_session: AsyncSession,
        choice_label: Optional[str] = None,
        choice_description: Optional[str] = None,
        choice_order: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> tuple[SurveyChoice, Optional[uuid.UUID]]:
        """Apply an edit; returns the choice and the job id if one was queued."""
        choice = await db_session.get(SurveyChoice, choice_id)
        if choice is None:
            raise NotFoundError(f"Choice {choice_id} not found")

        source_changed = _changed(choice.choice_label, choice_label) or _changed(
            choice.choice_description, choice_description
        )
        if choice_label is not None:
            choice.choice_label = choice_label
        if choice_description is not None:
            choice.choice_description = choice_description
        if choice_order is not None:
            choice.choice_order = choice_order
        if is_active is not None:
            choice.is_active = is_active

        job_id = None
        if source_changed:
            unit = ContentUnit(kind="choice", target_id=choice.id)
            job_id = await self._invalidate_and_enqueue(choice, unit, db_session)
        await db_session.flush()
        return choice, job_id

    # ------------------------------------------------------------------ #
    # Survey images
    # ------------------------------------------------------------------ #

    async def create_image(
        self,
        question_id: uuid.UUID,
        image_key: str,
        image_label: str,
        image_url: str,
        db_session: AsyncSession,
        image_description: Optional[str] = None,
        image_order: Optional[int] = None,
    ) -> SurveyImage:
        question = await db_session.get(SurveyQuestion, question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")

        image = SurveyImage(
            id=uuid.uuid4(),
            question_id=question_id,
            image_key=image_key,
            image_label=image_label,
            image_description=image_description,
            image_url=image_url,
            image_order=image_order if image_order is not None else 0,
            is_active=True,
        )
        db_session.add(image)
        await db_session.flush()
        await self.queue.enqueue("image_embedding", image.id, db_session)
        return image

    async def update_image(
        self,
        image_id: uuid.UUID,
        db_session: AsyncSession,
        image_label: Optional[str] = None,
        image_description: Optional[str] = None,
        image_url: Optional[str] = None,
        image_order: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> tuple[SurveyImage, Optional[uuid.UUID]]:
        image = await db_session.get(SurveyImage, image_id)
        if image is None:
            raise NotFoundError(f"Image {image_id} not found")

        source_changed = (
            _changed(image.image_label, image_label)
            or _changed(image.image_description, image_description)
            or _changed(image.image_url, image_url)
        )
        if image_label is not None:
            image.image_label = image_label
        if image_description is not None:
            image.image_description = image_description
        if image_url is not None:
            image.image_url = image_url
        if image_order is not None:
            image.image_order = image_order
        if is_active is not None:
            image.is_active = is_active

        job_id = None
        if source_changed:
            unit = ContentUnit(kind="image", target_id=image.id)
            job_id = await self._invalidate_and_enqueue(image, unit, db_session)
        await db_session.flush()
        return image, job_id

    # ------------------------------------------------------------------ #
    # Photographer profiles
    # ------------------------------------------------------------------ #

    async def upsert_profile(
        self,
        photographer_id: uuid.UUID,
        db_session: AsyncSession,
        descriptions: Optional[dict[str, Optional[str]]] = None,
        service_regions: Optional[list[str]] = None,
        companion_types: Optional[list[str]] = None,
        price_min: Optional[int] = None,
        price_max: Optional[int] = None,
    ) -> tuple[PhotographerProfile, list[uuid.UUID]]:
        """Create or edit a photographer's profile.

        Only the dimensions whose description text actually changed are
        invalidated and re-queued; the other three keep their vectors.
        ``profile_completed`` is recomputed from the four descriptions.
        """
        descriptions = descriptions or {}
        unknown = set(descriptions) - set(DIMENSIONS)
        if unknown:
            raise ValueError(f"Unknown profile dimensions: {sorted(unknown)}")
        if (
            price_min is not None
            and price_max is not None
            and price_min > price_max
        ):
            raise ValueError("price_min must not exceed price_max")

        photographer = await db_session.get(Photographer, photographer_id)
        if photographer is None:
            raise NotFoundError(f"Photographer {photographer_id} not found")

        profile = await db_session.get(PhotographerProfile, photographer_id)
        if profile is None:
            profile = PhotographerProfile(
                photographer_id=photographer_id,
                service_regions=[],
                companion_types=[],
                price_min=0,
                price_max=0,
                profile_completed=False,
            )
            db_session.add(profile)

        job_ids: list[uuid.UUID] = []
        for dimension, text in descriptions.items():
            new_text = (text or "").strip() or None
            if new_text == profile.description_for(dimension):
                continue
            setattr(profile, f"{dimension}_description", new_text)

            unit = ContentUnit(
                kind="profile_dimension", target_id=photographer_id, dimension=dimension
            )
            if new_text is None:
                apply_invalidation(profile, unit)
                logger.info("content_unit_invalidated", unit=str(unit), job_id=None)
            else:
                job_ids.append(await self._invalidate_and_enqueue(profile, unit, db_session))

        if service_regions is not None:
            profile.service_regions = list(service_regions)
        if companion_types is not None:
            profile.companion_types = list(companion_types)
        if price_min is not None:
            profile.price_min = price_min
        if price_max is not None:
            profile.price_max = price_max

        profile.refresh_completion()
        await db_session.flush()

        logger.info(
            "profile_saved",
            photographer_id=str(photographer_id),
            profile_completed=profile.profile_completed,
            jobs_enqueued=len(job_ids),
        )
        return profile, job_ids

    # ------------------------------------------------------------------ #
    # Generate-all
    # ------------------------------------------------------------------ #

    async def enqueue_missing(self, db_session: AsyncSession) -> dict[str, int]:
        """Queue a job for every active unit that has no current embedding.

        Returns the number of jobs created per job type, plus
        ``already_queued`` for units that already had a pending job.
        """
        counts = {
            "choice_embedding": 0,
            "image_embedding": 0,
            "profile_dimension_embedding": 0,
            "already_queued": 0,
        }
        pending_ids = set(
            (
                await db_session.execute(
                    select(EmbeddingJob.id).where(EmbeddingJob.status == "pending")
                )
            ).scalars().all()
        )

        def _count(job_type: str, job_id: uuid.UUID) -> None:
            if job_id in pending_ids:
                counts["already_queued"] += 1
            else:
                counts[job_type] += 1
                pending_ids.add(job_id)

        choice_ids = (
            await db_session.execute(
                select(SurveyChoice.id).where(
                    SurveyChoice.is_active.is_(True),
                    or_(
                        SurveyChoice.choice_embedding.is_(None),
                        SurveyChoice.embedding_generated_at.is_(None),
                    ),
                )
            )
        ).scalars().all()
        for choice_id in choice_ids:
            job_id = await self.queue.enqueue("choice_embedding", choice_id, db_session)
            _count("choice_embedding", job_id)

        image_ids = (
            await db_session.execute(
                select(SurveyImage.id).where(
                    SurveyImage.is_active.is_(True),
                    or_(
                        SurveyImage.image_embedding.is_(None),
                        SurveyImage.embedding_generated_at.is_(None),
                    ),
                )
            )
        ).scalars().all()
        for image_id in image_ids:
            job_id = await self.queue.enqueue("image_embedding", image_id, db_session)
            _count("image_embedding", job_id)

        profiles = (
            await db_session.execute(select(PhotographerProfile))
        ).scalars().all()
        for profile in profiles:
            for dimension in DIMENSIONS:
                if profile.description_for(dimension) and not profile.has_current_embedding(
                    dimension
                ):
                    job_id = await self.queue.enqueue(
                        "profile_dimension_embedding",
                        profile.photographer_id,
                        db_session,
                        dimension=dimension,
                    )
                    _count("profile_dimension_embedding", job_id)

        logger.info("missing_embeddings_enqueued", **counts)
        return counts
